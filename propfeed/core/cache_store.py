"""
Namespaced in-memory cache with per-namespace default TTL.

Provides:
- Fixed namespaces, each with its own default TTL and flush scope
- Explicit per-key TTL override
- Existence and remaining-TTL introspection
- Hit/miss statistics per namespace

All operations are synchronous dictionary operations. Under the single
event loop they never suspend, so a read or write is atomic with respect to
other coroutines. A miss or an expired key is a normal return value.

Usage:
    store = CacheStore({"properties": 1800, "images": 3600})
    store.set("properties", "all", snapshot)
    snapshot = store.get("properties", "all")
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from propfeed.core.errors import CacheError

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A single cache entry with value and metadata."""
    namespace: str
    key: str
    value: Any
    expires_at: float
    hits: int = 0

    def is_expired(self, now: float) -> bool:
        """An entry is gone from the instant its expiry is reached."""
        return now >= self.expires_at

    def time_remaining(self, now: float) -> float:
        return max(0.0, self.expires_at - now)


@dataclass
class _Namespace:
    name: str
    default_ttl: float
    entries: Dict[str, CacheEntry] = field(default_factory=dict)
    stats: Dict[str, int] = field(default_factory=lambda: {
        "hits": 0,
        "misses": 0,
        "sets": 0,
        "expirations": 0,
    })


class CacheStore:
    """
    Key/value store partitioned into namespaces.

    The namespace is part of the internal address, so equal keys in
    different namespaces never collide and a flush touches one namespace only.
    """

    def __init__(
        self,
        namespaces: Mapping[str, float],
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the store.

        Args:
            namespaces: Namespace name -> default TTL in seconds
            clock: Monotonic time source (injectable for tests)
        """
        if not namespaces:
            raise ValueError("CacheStore needs at least one namespace")

        self._clock = clock
        self._namespaces: Dict[str, _Namespace] = {}
        for name, ttl in namespaces.items():
            if ttl <= 0:
                raise ValueError(f"Default TTL for namespace '{name}' must be positive")
            self._namespaces[name] = _Namespace(name=name, default_ttl=float(ttl))

        logger.info(
            "Initialized cache store: "
            + ", ".join(f"{n}={int(ns.default_ttl)}s" for n, ns in self._namespaces.items())
        )

    @property
    def namespaces(self) -> Dict[str, float]:
        return {name: ns.default_ttl for name, ns in self._namespaces.items()}

    def _namespace(self, name: str) -> _Namespace:
        ns = self._namespaces.get(name)
        if ns is None:
            raise CacheError(f"Unknown cache namespace '{name}'", namespace=name)
        return ns

    def _live_entry(self, ns: _Namespace, key: str) -> Optional[CacheEntry]:
        """Return the entry if present and unexpired; drop it if expired."""
        entry = ns.entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del ns.entries[key]
            ns.stats["expirations"] += 1
            return None
        return entry

    def get(self, namespace: str, key: str, default: Any = None) -> Any:
        """
        Get a value from the cache.

        Args:
            namespace: Cache namespace
            key: Key within the namespace
            default: Returned when the key is absent or expired

        Returns:
            Cached value, or default
        """
        ns = self._namespace(namespace)
        entry = self._live_entry(ns, key)
        if entry is None:
            ns.stats["misses"] += 1
            return default

        entry.hits += 1
        ns.stats["hits"] += 1
        return entry.value

    def set(
        self,
        namespace: str,
        key: str,
        value: Any,
        ttl_seconds: Optional[float] = None,
    ) -> bool:
        """
        Store a value, replacing any previous value for the key.

        Args:
            namespace: Cache namespace
            key: Key within the namespace
            value: Value to cache (stored as-is, not copied)
            ttl_seconds: Time-to-live; zero or None uses the namespace default

        Returns:
            True if stored, False if the TTL was rejected
        """
        ns = self._namespace(namespace)
        if ttl_seconds is not None and ttl_seconds < 0:
            logger.warning(f"Rejected negative TTL {ttl_seconds} for {namespace}:{key}")
            return False

        ttl = ttl_seconds if ttl_seconds else ns.default_ttl
        ns.entries[key] = CacheEntry(
            namespace=namespace,
            key=key,
            value=value,
            expires_at=self._clock() + ttl,
        )
        ns.stats["sets"] += 1
        return True

    def delete(self, namespace: str, key: str) -> bool:
        """
        Delete a key.

        Returns:
            True if a live key was removed, False if not found
        """
        ns = self._namespace(namespace)
        entry = self._live_entry(ns, key)
        if entry is None:
            return False
        del ns.entries[key]
        return True

    def exists(self, namespace: str, key: str) -> bool:
        """Check if a key exists and is not expired."""
        ns = self._namespace(namespace)
        return self._live_entry(ns, key) is not None

    def ttl_remaining(self, namespace: str, key: str) -> float:
        """
        Seconds until the key expires.

        Returns:
            Remaining seconds, or -1 if the key is absent or expired
        """
        ns = self._namespace(namespace)
        entry = self._live_entry(ns, key)
        if entry is None:
            return -1
        return entry.time_remaining(self._clock())

    def flush(self, namespace: str) -> int:
        """
        Remove every key in one namespace.

        Returns:
            Number of entries removed
        """
        ns = self._namespace(namespace)
        count = len(ns.entries)
        ns.entries.clear()
        logger.info(f"Flushed cache namespace '{namespace}' ({count} entries)")
        return count

    def purge_expired(self) -> int:
        """Drop expired entries in all namespaces."""
        now = self._clock()
        removed = 0
        for ns in self._namespaces.values():
            expired_keys = [k for k, e in ns.entries.items() if e.is_expired(now)]
            for key in expired_keys:
                del ns.entries[key]
            ns.stats["expirations"] += len(expired_keys)
            removed += len(expired_keys)

        if removed:
            logger.debug(f"Cache cleanup: removed {removed} expired entries")
        return removed

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics per namespace."""
        stats: Dict[str, Any] = {}
        for name, ns in self._namespaces.items():
            total_requests = ns.stats["hits"] + ns.stats["misses"]
            hit_rate = ns.stats["hits"] / total_requests if total_requests > 0 else 0
            stats[name] = {
                **ns.stats,
                "entries": len(ns.entries),
                "default_ttl": ns.default_ttl,
                "hit_rate": f"{hit_rate:.2%}",
            }
        return stats
