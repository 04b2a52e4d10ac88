"""
On-demand property lookups.

Read path used by request handlers: cache first, and on a miss one coalesced
upstream load per key shared by every concurrent caller. When every upstream
source fails the caller still gets an answer: a placeholder flagged with
is_fallback=True and source="fallback". Fallback data is never cached.
"""
import logging
from typing import Any, List, Optional

from propfeed.core.cache_store import CacheStore
from propfeed.core.coalescer import RequestCoalescer
from propfeed.core.errors import CacheError, FeedError, PropertyNotFoundError
from propfeed.core.models import (
    Address,
    Image,
    Property,
    PropertyCollection,
    PropertyFilters,
    PropertyPage,
)
from propfeed.core.scheduler_service import PROPERTIES_NAMESPACE, SNAPSHOT_KEY

logger = logging.getLogger(__name__)

IMAGES_NAMESPACE = "images"

FALLBACK_SOURCE = "fallback"
FALLBACK_PROPERTY_ID = "fallback-1"


def fallback_property(property_id: str = FALLBACK_PROPERTY_ID) -> Property:
    """Placeholder listing served when no real data can be obtained."""
    return Property(
        id=property_id,
        title="Listing temporarily unavailable",
        address=Address(city="Madrid", province="Madrid"),
        is_fallback=True,
    )


def fallback_collection() -> PropertyCollection:
    return PropertyCollection(
        properties=[fallback_property()],
        source=FALLBACK_SOURCE,
        is_fallback=True,
    )


class PropertyLookupService:
    """Cache-backed, coalesced access to the listing snapshot and images."""

    def __init__(
        self,
        cache: CacheStore,
        coalescer: RequestCoalescer,
        ingestor,
        partner_client=None,
        upstream_timeout: Optional[float] = None,
    ):
        """
        Initialize the lookup service.

        Args:
            cache: Cache store holding the snapshot and image lists
            coalescer: Single-flight primitive for upstream loads
            ingestor: Object with an async load() returning a PropertyCollection
            partner_client: Optional PartnerAPIClient used for images
            upstream_timeout: Limit for one shared upstream call (seconds)
        """
        self.cache = cache
        self.coalescer = coalescer
        self.ingestor = ingestor
        self.partner_client = partner_client
        self.upstream_timeout = upstream_timeout

    def _cache_get(self, namespace: str, key: str) -> Any:
        try:
            return self.cache.get(namespace, key)
        except CacheError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return None

    def _cache_set(self, namespace: str, key: str, value: Any) -> None:
        try:
            self.cache.set(namespace, key, value)
        except CacheError as e:
            logger.warning(f"Cache write failed: {e}")

    # -------------------------------------------------------------------------
    # Snapshot
    # -------------------------------------------------------------------------

    async def _load_snapshot(self) -> PropertyCollection:
        collection = await self.ingestor.load()
        self._cache_set(PROPERTIES_NAMESPACE, SNAPSHOT_KEY, collection)
        return collection

    async def get_snapshot(self) -> PropertyCollection:
        """
        Current listing snapshot.

        Returns:
            Cached collection, a freshly loaded one on a miss, or the flagged
            fallback collection when the load fails
        """
        cached = self._cache_get(PROPERTIES_NAMESPACE, SNAPSHOT_KEY)
        if cached is not None:
            return cached

        try:
            return await self.coalescer.run_coalesced(
                f"{PROPERTIES_NAMESPACE}:{SNAPSHOT_KEY}",
                self._load_snapshot,
                timeout=self.upstream_timeout,
            )
        except FeedError as e:
            logger.warning(f"Serving fallback listing, upstream load failed: {e}")
        except Exception as e:
            logger.warning(
                f"Serving fallback listing, upstream load failed: {type(e).__name__}: {e}",
                exc_info=True,
            )
        return fallback_collection()

    async def list_properties(self, filters: Optional[PropertyFilters] = None) -> PropertyPage:
        """Filtered, paginated view of the snapshot."""
        collection = await self.get_snapshot()
        return PropertyPage.from_collection(collection, filters or PropertyFilters())

    async def get_property(self, property_id: str) -> Property:
        """
        Look up one listing.

        Returns:
            The listing, or a fallback placeholder if no snapshot could be loaded

        Raises:
            PropertyNotFoundError: If a genuine snapshot has no such listing
        """
        collection = await self.get_snapshot()
        if collection.is_fallback:
            return fallback_property(property_id)

        prop = collection.find(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    # -------------------------------------------------------------------------
    # Images
    # -------------------------------------------------------------------------

    async def _load_images(self, property_id: str) -> List[Image]:
        if self.partner_client is not None:
            images = await self.partner_client.get_property_images(property_id)
        else:
            collection = await self.get_snapshot()
            if collection.is_fallback:
                return []
            prop = collection.find(property_id)
            images = prop.images if prop else []

        self._cache_set(IMAGES_NAMESPACE, property_id, images)
        return images

    async def get_property_images(self, property_id: str) -> List[Image]:
        """
        Images of one listing.

        Uses the partner API when configured, otherwise the images embedded
        in the feed. Never raises; a failed lookup yields an empty list.
        """
        cached = self._cache_get(IMAGES_NAMESPACE, property_id)
        if cached is not None:
            return cached

        try:
            return await self.coalescer.run_coalesced(
                f"{IMAGES_NAMESPACE}:{property_id}",
                lambda: self._load_images(property_id),
                timeout=self.upstream_timeout,
            )
        except Exception as e:
            logger.warning(f"Image lookup for {property_id} failed, returning none: {e}")
            return []
