"""
Single-flight request coalescing.

Concurrent callers asking for the same key share one producer call and
receive the identical outcome, success or failure. The slot for a key is
removed inside the producer task itself, before its result is published,
so a caller arriving after settlement always starts a fresh attempt.

Slot lookup, creation and removal contain no await, which makes them
atomic under the event loop.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)

Producer = Callable[[], Awaitable[Any]]


class RequestCoalescer:
    """At most one in-flight producer call per key."""

    def __init__(self, name: str = "coalescer"):
        self.name = name
        self._slots: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self._stats = {"started": 0, "joined": 0}

    async def run_coalesced(
        self,
        key: Hashable,
        producer: Producer,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Run producer for key, or join the call already in flight.

        Args:
            key: Coalescing key
            producer: Zero-argument coroutine function
            timeout: Optional limit for the shared producer call; on expiry
                every attached caller receives asyncio.TimeoutError

        Returns:
            The producer's result

        Raises:
            Whatever the producer raised, identically for every attached caller
        """
        task = self._slots.get(key)
        if task is None:
            task = asyncio.ensure_future(self._run(key, producer, timeout))
            task.add_done_callback(_consume_exception)
            self._slots[key] = task
            self._stats["started"] += 1
        else:
            self._stats["joined"] += 1
            logger.debug(f"[{self.name}] Joined in-flight call for {key!r}")

        # A cancelled caller must not cancel the call other callers wait on
        return await asyncio.shield(task)

    async def _run(self, key: Hashable, producer: Producer, timeout: Optional[float]) -> Any:
        try:
            if timeout is not None:
                return await asyncio.wait_for(producer(), timeout)
            return await producer()
        finally:
            if self._slots.get(key) is asyncio.current_task():
                del self._slots[key]

    def in_flight(self, key: Hashable) -> bool:
        return key in self._slots

    def pending_keys(self) -> List[Hashable]:
        return list(self._slots)

    def get_stats(self) -> Dict[str, int]:
        return {**self._stats, "in_flight": len(self._slots)}


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    # Keeps asyncio from reporting an unretrieved exception when every caller was cancelled
    if not task.cancelled():
        task.exception()
