"""
Composition root.

Builds every service once per process from Settings and wires them together.
Nothing here is a module-level instance; the application owns the container
and hands it to request handlers through app.state.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from propfeed.core.cache_store import CacheStore
from propfeed.core.coalescer import RequestCoalescer
from propfeed.core.config import Settings, get_settings
from propfeed.core.scheduler_service import IngestionScheduler
from propfeed.services.property_lookup import PropertyLookupService
from propfeed.sources.idealista.client import PartnerAPIClient
from propfeed.sources.idealista.ingest import FeedIngestor
from propfeed.sources.idealista.parser import FeedParser
from propfeed.sources.idealista.transport import (
    FeedTransport,
    FtpFeedTransport,
    LocalDirectoryTransport,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Process-scoped services."""
    settings: Settings
    cache: CacheStore
    coalescer: RequestCoalescer
    transport: FeedTransport
    ingestor: FeedIngestor
    scheduler: IngestionScheduler
    lookup: PropertyLookupService
    partner_client: Optional[PartnerAPIClient] = None

    async def aclose(self) -> None:
        """Stop the timer and release network clients."""
        self.scheduler.shutdown()
        if self.partner_client is not None:
            await self.partner_client.close()


def build_transport(settings: Settings) -> FeedTransport:
    """Create the configured feed transport."""
    if settings.feed_transport == "local":
        return LocalDirectoryTransport(
            directory=settings.feed_local_dir,
            timeout_seconds=settings.feed_timeout_seconds,
        )

    return FtpFeedTransport(
        host=settings.feed_ftp_host,
        port=settings.feed_ftp_port,
        user=settings.feed_ftp_user,
        password=settings.feed_ftp_password,
        directory=settings.feed_ftp_directory,
        passive=settings.feed_ftp_passive,
        timeout_seconds=settings.feed_timeout_seconds,
        archive_dir=settings.feed_local_dir if settings.feed_archive_downloads else None,
    )


def build_container(
    settings: Optional[Settings] = None,
    transport: Optional[FeedTransport] = None,
) -> ServiceContainer:
    """
    Wire the services.

    Args:
        settings: Settings to use (process settings when omitted)
        transport: Transport override (tests, alternative sources)

    Returns:
        ServiceContainer with every service constructed
    """
    settings = settings or get_settings()
    transport = transport or build_transport(settings)

    cache = CacheStore(settings.cache_namespace_ttls())
    coalescer = RequestCoalescer(name="lookups")
    ingestor = FeedIngestor(
        transport=transport,
        parser=FeedParser(),
        fetch_attempts=settings.feed_fetch_attempts,
        backoff_factor=settings.feed_retry_backoff_factor,
        retry_base_delay=settings.feed_retry_base_delay,
    )
    scheduler = IngestionScheduler(
        ingestor=ingestor,
        cache=cache,
        cron_expression=settings.feed_cron_schedule,
        tz=settings.feed_timezone,
    )

    partner_client = None
    if settings.partner_api_enabled():
        partner_client = PartnerAPIClient(
            base_url=settings.partner_api_base_url,
            token=settings.partner_api_token,
            feed_key=settings.partner_api_feed_key,
        )

    lookup = PropertyLookupService(
        cache=cache,
        coalescer=coalescer,
        ingestor=ingestor,
        partner_client=partner_client,
        upstream_timeout=settings.lookup_upstream_timeout_seconds,
    )

    logger.info(
        f"Services ready: transport={transport.name} ({transport.location}), "
        f"partner_api={'on' if partner_client else 'off'}"
    )
    return ServiceContainer(
        settings=settings,
        cache=cache,
        coalescer=coalescer,
        transport=transport,
        ingestor=ingestor,
        scheduler=scheduler,
        lookup=lookup,
        partner_client=partner_client,
    )
