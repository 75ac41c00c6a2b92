"""
Priority request queue and per-source dispatch worker.

Requests wait in three FIFO tiers and are dispatched one at a time, gated
by the source's circuit breaker and rate limiter. Transient failures are
retried with exponential backoff; retries re-enter at the front of their
tier.
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Set

from fpl_gateway.orchestrator.circuit_breaker import CircuitBreaker
from fpl_gateway.orchestrator.rate_limiter import RateLimiter
from fpl_gateway.utils.exceptions import (
    RateLimitedError,
    TransientNetworkError,
    UpstreamServerError,
)

logger = logging.getLogger(__name__)

# Exponential backoff schedule in seconds, 10% jitter added on top
RETRY_DELAYS = (1.0, 2.0, 4.0, 8.0, 16.0)
RETRY_JITTER = 0.1

# Politeness delay tuning
FAILURE_DELAY_STEP = 0.5
MAX_JITTER_DELAY = 0.2
MAX_REQUEST_DELAY = 5.0


class RequestPriority(IntEnum):
    """Dispatch tiers, highest first."""

    HIGH = 0
    MEDIUM = 1
    LOW = 2


@dataclass
class QueuedRequest:
    """
    One pending upstream call.

    Attributes:
        resource_key: Resource being fetched
        priority: Dispatch tier
        fetch: Zero-argument callable returning the upstream coroutine
        future: Settled with the result or the final error
        enqueued_at: Epoch seconds when first queued
        retry_count: Attempts already retried
    """

    resource_key: str
    priority: RequestPriority
    fetch: Callable[[], Awaitable[Any]]
    future: asyncio.Future
    enqueued_at: float = field(default_factory=time.time)
    retry_count: int = 0


class PriorityRequestQueue:
    """Three FIFO deques drained HIGH, then MEDIUM, then LOW."""

    def __init__(self):
        self._tiers: Dict[RequestPriority, Deque[QueuedRequest]] = {
            priority: deque() for priority in RequestPriority
        }

    def push(self, request: QueuedRequest) -> None:
        self._tiers[request.priority].append(request)

    def push_front(self, request: QueuedRequest) -> None:
        """Re-queue a retried request ahead of its tier."""
        self._tiers[request.priority].appendleft(request)

    def pop(self) -> Optional[QueuedRequest]:
        for priority in RequestPriority:
            tier = self._tiers[priority]
            if tier:
                return tier.popleft()
        return None

    def drain(self) -> list:
        """Remove and return every queued request."""
        drained = []
        for priority in RequestPriority:
            drained.extend(self._tiers[priority])
            self._tiers[priority].clear()
        return drained

    @property
    def depth(self) -> int:
        return sum(len(tier) for tier in self._tiers.values())

    def depth_by_priority(self) -> Dict[str, int]:
        return {priority.name.lower(): len(tier) for priority, tier in self._tiers.items()}

    def __len__(self) -> int:
        return self.depth


class RequestScheduler:
    """
    Sequential dispatch worker for one upstream source.

    Features:
    - Fail-fast when the breaker is open (queued callers settle with
      CircuitOpenError, no network traffic)
    - Deferral while the rate limiter has no headroom, or failure with
      RateLimitedError when the wait exceeds max_defer_seconds
    - Politeness delay before each call, growing with failures and load
    - Retry with 1, 2, 4, 8, 16 s backoff for transient errors
    - Upstream 429 blocks the limiter until the provider's reset

    Example:
        >>> scheduler = RequestScheduler("rapidapi_fpl", limiter, breaker)
        >>> await scheduler.start()
        >>> future = scheduler.submit("fixtures", fetch, RequestPriority.MEDIUM)
        >>> payload = await future
    """

    def __init__(
        self,
        name: str,
        limiter: RateLimiter,
        breaker: CircuitBreaker,
        max_retries: int = 3,
        max_defer_seconds: float = 60.0,
        poll_interval: float = 0.1,
        base_request_delay: float = 0.3,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize dispatch worker.

        Args:
            name: Source name
            limiter: The source's rate limiter
            breaker: The source's circuit breaker
            max_retries: Retry budget per request
            max_defer_seconds: Longest rate-limit wait before failing queued requests
            poll_interval: Idle wait between queue checks
            base_request_delay: Politeness delay before each call (0 disables it)
            clock: Epoch-seconds clock (defaults to time.time)
            sleep: Async sleep (defaults to asyncio.sleep)
        """
        self.name = name
        self.limiter = limiter
        self.breaker = breaker
        self.max_retries = max_retries
        self.max_defer_seconds = max_defer_seconds
        self.poll_interval = poll_interval
        self.base_request_delay = base_request_delay
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

        self.queue = PriorityRequestQueue()
        self._wakeup = asyncio.Event()
        self._worker: Optional[asyncio.Task] = None
        self._retry_tasks: Set[asyncio.Task] = set()
        self._running = False

        self._stats = {
            "submitted": 0,
            "dispatched": 0,
            "succeeded": 0,
            "failed": 0,
            "retried": 0,
            "rejected_circuit_open": 0,
            "rejected_rate_limited": 0,
        }
        self.last_dispatch_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker task."""
        if self._running:
            logger.warning(f"Request scheduler {self.name} is already running")
            return

        self._running = True
        self._worker = asyncio.ensure_future(self._run())
        logger.info(f"Request scheduler started: {self.name}")

    async def stop(self) -> None:
        """Stop the worker and settle pending requests with CancelledError."""
        if not self._running:
            return

        self._running = False
        self._wakeup.set()

        for task in list(self._retry_tasks):
            task.cancel()

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        for request in self.queue.drain():
            if not request.future.done():
                request.future.cancel()

        logger.info(f"Request scheduler stopped: {self.name}")

    def submit(
        self,
        resource_key: str,
        fetch: Callable[[], Awaitable[Any]],
        priority: RequestPriority = RequestPriority.MEDIUM,
    ) -> asyncio.Future:
        """
        Queue an upstream call.

        Args:
            resource_key: Resource being fetched
            fetch: Zero-argument callable returning the upstream coroutine
            priority: Dispatch tier

        Returns:
            Future settled with the call's result or final error
        """
        future = asyncio.get_running_loop().create_future()
        self.queue.push(
            QueuedRequest(
                resource_key=resource_key,
                priority=priority,
                fetch=fetch,
                future=future,
                enqueued_at=self._clock(),
            )
        )
        self._stats["submitted"] += 1
        self._wakeup.set()

        logger.debug(
            f"Queued {self.name} request {resource_key}",
            extra={"priority": priority.name, "depth": self.queue.depth},
        )
        return future

    async def _run(self) -> None:
        while self._running:
            if self.queue.depth == 0:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                continue

            try:
                await self._process_next()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Request scheduler {self.name} loop error: {e}", exc_info=True)

    async def _process_next(self) -> None:
        """Run one gate check and dispatch at most one request."""
        if not self.breaker.is_available():
            self._fail_all(self.breaker.rejection_error(), "rejected_circuit_open")
            return

        wait = self.limiter.wait_time()
        if wait > self.max_defer_seconds:
            error = RateLimitedError(
                f"{self.name} quota exhausted",
                source=self.name,
                next_available_at=self._clock() + wait,
            )
            self._fail_all(error, "rejected_rate_limited")
            return
        if wait > 0:
            logger.info(f"Rate limit reached for {self.name}, deferring {wait:.1f}s")
            await self._sleep(wait)
            return

        request = self.queue.pop()
        if request is None or request.future.done():
            return

        if not self.breaker.allow_request():
            request.future.set_exception(self.breaker.rejection_error())
            self._stats["rejected_circuit_open"] += 1
            return

        if not self.limiter.try_acquire():
            self.breaker.release()
            self.queue.push_front(request)
            return

        await self._dispatch(request)

    async def _dispatch(self, request: QueuedRequest) -> None:
        delay = self._politeness_delay()
        if delay > 0:
            await self._sleep(delay)

        self._stats["dispatched"] += 1
        self.last_dispatch_at = self._clock()

        try:
            result = await request.fetch()

        except RateLimitedError as e:
            # Quota responses say nothing about service health
            self.breaker.release()
            wait = e.retry_after if e.retry_after is not None else self._backoff_delay(request.retry_count)
            self.limiter.block_until(self._clock() + wait)
            if request.retry_count < self.max_retries:
                request.retry_count += 1
                self._stats["retried"] += 1
                self.queue.push_front(request)
                logger.warning(
                    f"{self.name} rate limited on {request.resource_key}, requeued",
                    extra={"retry_after": wait, "retry_count": request.retry_count},
                )
            else:
                self._settle_error(request, e)

        except (TransientNetworkError, UpstreamServerError) as e:
            self.breaker.record_failure()
            if request.retry_count < self.max_retries:
                self._schedule_retry(request, e)
            else:
                logger.error(
                    f"{self.name} request {request.resource_key} failed after "
                    f"{request.retry_count} retries: {e}"
                )
                self._settle_error(request, e)

        except asyncio.CancelledError:
            self.breaker.release()
            if not request.future.done():
                request.future.cancel()
            raise

        except Exception as e:
            # Schema mismatches and non-retryable client errors settle immediately
            self.breaker.release()
            self._settle_error(request, e)

        else:
            self.breaker.record_success()
            self._stats["succeeded"] += 1
            if not request.future.done():
                request.future.set_result(result)

    def _schedule_retry(self, request: QueuedRequest, error: Exception) -> None:
        delay = self._backoff_delay(request.retry_count)
        request.retry_count += 1
        self._stats["retried"] += 1
        logger.warning(
            f"Retrying {self.name} {request.resource_key} in {delay:.2f}s "
            f"(attempt {request.retry_count + 1}): {error}"
        )

        task = asyncio.ensure_future(self._requeue_after(request, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_after(self, request: QueuedRequest, delay: float) -> None:
        try:
            await self._sleep(delay)
        except asyncio.CancelledError:
            if not request.future.done():
                request.future.cancel()
            raise

        if request.future.done():
            return
        self.queue.push_front(request)
        self._wakeup.set()

    def _settle_error(self, request: QueuedRequest, error: Exception) -> None:
        self._stats["failed"] += 1
        if not request.future.done():
            request.future.set_exception(error)

    def _fail_all(self, error: Exception, counter: str) -> None:
        drained = self.queue.drain()
        for request in drained:
            if not request.future.done():
                request.future.set_exception(error)
                self._stats[counter] += 1

        logger.warning(
            f"Failing {len(drained)} queued {self.name} requests: {type(error).__name__}",
        )

    def _backoff_delay(self, retry_count: int) -> float:
        base = RETRY_DELAYS[min(retry_count, len(RETRY_DELAYS) - 1)]
        return base + random.uniform(0, base * RETRY_JITTER)

    def _politeness_delay(self) -> float:
        """Base delay plus failure-based, load-based and jitter components, capped at 5 s."""
        if self.base_request_delay <= 0:
            return 0.0

        delay = self.base_request_delay
        delay += self.breaker.failure_count * FAILURE_DELAY_STEP

        minute = self.limiter.minute
        request_rate = minute.count / (minute.max_count * 0.8) if minute.max_count else 0
        if request_rate > 0.5:
            delay += request_rate

        delay += random.uniform(0, MAX_JITTER_DELAY)
        return min(delay, MAX_REQUEST_DELAY)

    def get_statistics(self) -> dict:
        """Get queue depth and dispatch counters."""
        return {
            "name": self.name,
            "is_running": self._running,
            "depth": self.queue.depth,
            "depth_by_priority": self.queue.depth_by_priority(),
            "pending_retries": len(self._retry_tasks),
            **self._stats,
        }

    def __repr__(self) -> str:
        return f"RequestScheduler(name={self.name}, depth={self.queue.depth}, running={self._running})"
