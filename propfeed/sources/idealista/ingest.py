"""
Idealista feed ingestion.

One load is Transport.fetch_latest -> FeedParser.decode -> FeedParser.normalize
and yields a complete PropertyCollection. Storing the collection is the
scheduler's job, so a failed load never touches cached data.
"""
import asyncio
import logging
from typing import Optional, Tuple

from propfeed.core.errors import TransportError
from propfeed.core.http_client import backoff_delay
from propfeed.core.models import PropertyCollection
from propfeed.sources.idealista.parser import FeedFormat, FeedParser
from propfeed.sources.idealista.transport import FeedFile, FeedTransport

logger = logging.getLogger(__name__)


class FeedIngestor:
    """
    Loads the most recent feed file into a PropertyCollection.

    Retryable transport failures (timeouts, dropped connections) are retried
    here with exponential backoff; the transport itself never retries.
    """

    def __init__(
        self,
        transport: FeedTransport,
        parser: Optional[FeedParser] = None,
        fetch_attempts: int = 2,
        backoff_factor: float = 2.0,
        retry_base_delay: float = 1.0,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the ingestor.

        Args:
            transport: Where feed files come from
            parser: Feed parser (default field rules when omitted)
            fetch_attempts: Attempts per load for retryable transport errors
            backoff_factor: Exponential backoff multiplier between attempts
            retry_base_delay: Delay before the first retry in seconds
            timeout: Per-operation transport timeout override
        """
        self.transport = transport
        self.parser = parser or FeedParser()
        self.fetch_attempts = max(1, fetch_attempts)
        self.backoff_factor = backoff_factor
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout

    async def _fetch_with_retry(self) -> Tuple[FeedFile, bytes]:
        attempt = 0
        while True:
            try:
                return await self.transport.fetch_latest(timeout=self.timeout)
            except TransportError as e:
                attempt += 1
                if not e.retryable or attempt >= self.fetch_attempts:
                    raise
                delay = backoff_delay(attempt - 1, self.backoff_factor, base_delay=self.retry_base_delay)
                logger.warning(
                    f"Feed fetch failed ({e.reason}), retrying in {delay:.2f}s "
                    f"(attempt {attempt}/{self.fetch_attempts})"
                )
                await asyncio.sleep(delay)

    async def load(self) -> PropertyCollection:
        """
        Fetch, decode and normalize the latest feed.

        Returns:
            PropertyCollection with every record that survived normalization

        Raises:
            TransportError: If the feed could not be retrieved
            ParseError: If the feed format is unsupported or the bytes are malformed
        """
        feed_file, data = await self._fetch_with_retry()

        fmt = FeedFormat.from_filename(feed_file.name)
        tree = self.parser.decode(data, fmt)
        properties, report = self.parser.normalize_with_report(tree)

        logger.info(
            f"Loaded {feed_file.name} ({fmt.value}, {len(data)} bytes): "
            f"{report.kept}/{report.seen} records kept"
        )
        return PropertyCollection(
            properties=properties,
            feed_name=feed_file.name,
            source=self.transport.name,
        )
