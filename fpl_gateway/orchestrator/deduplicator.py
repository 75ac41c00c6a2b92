"""
Request deduplication to prevent duplicate upstream API calls.

When several coroutines ask for the same resource concurrently, only one
upstream call is made and every caller receives the same result or the
same exception.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


@dataclass
class InFlightRequest:
    """Tracks an in-progress upstream request."""

    task: asyncio.Future
    started_at: float = field(default_factory=time.time)
    waiter_count: int = 1


class RequestDeduplicator:
    """
    Single-flight map from resource key to the in-flight task.

    Pattern:
    - First caller for a key starts the task
    - Later callers join it while it is pending
    - The entry is removed exactly once when the task settles
    - Each waiter is shielded, so cancelling one caller never cancels
      the shared call for the others

    Usage:
        dedup = RequestDeduplicator()
        payload = await dedup.run("fixtures", lambda: client.get("/api/fixtures/"))
    """

    def __init__(self):
        self._in_flight: Dict[str, InFlightRequest] = {}
        self._stats = {
            "started": 0,
            "coalesced": 0,
        }

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """
        Join the in-flight call for key or start a new one.

        Args:
            key: Resource key
            factory: Zero-argument callable returning the awaitable to run

        Returns:
            The shared result

        Raises:
            Exception: The shared call's exception, identical for every caller
        """
        in_flight = self._in_flight.get(key)

        if in_flight is None:
            task = asyncio.ensure_future(factory())
            in_flight = InFlightRequest(task=task)
            self._in_flight[key] = in_flight
            self._stats["started"] += 1
            task.add_done_callback(lambda t, k=key, req=in_flight: self._settle(k, req))
            logger.debug(f"Initiating fetch for {key}")
        else:
            in_flight.waiter_count += 1
            self._stats["coalesced"] += 1
            logger.debug(f"Coalescing request for {key} (waiters: {in_flight.waiter_count})")

        return await asyncio.shield(in_flight.task)

    def _settle(self, key: str, in_flight: InFlightRequest) -> None:
        if self._in_flight.get(key) is in_flight:
            del self._in_flight[key]

        # Mark the exception retrieved even if every waiter was cancelled
        if not in_flight.task.cancelled():
            in_flight.task.exception()

    @property
    def in_flight(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def keys(self) -> list:
        return list(self._in_flight.keys())

    def get_statistics(self) -> Dict[str, Any]:
        """Get deduplicator statistics."""
        return {
            "in_flight": len(self._in_flight),
            "in_flight_keys": list(self._in_flight.keys()),
            **self._stats,
        }
