"""
Source adapter base class.

Every upstream provider is reached through the same pipeline:
dedup → cache → breaker → queue admission → rate-limit gate →
conditional HTTP fetch → cache write. Concrete adapters only describe
their endpoints and how to normalize the payloads.
"""

import logging
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional
from urllib.parse import urlencode

from fpl_gateway.clients.http_client import SourceHttpClient
from fpl_gateway.config import SourceConfig
from fpl_gateway.orchestrator.cache_manager import CacheEntry, TieredCache
from fpl_gateway.orchestrator.circuit_breaker import CircuitBreaker
from fpl_gateway.orchestrator.deduplicator import RequestDeduplicator
from fpl_gateway.orchestrator.rate_limiter import RateLimiter
from fpl_gateway.orchestrator.request_queue import RequestPriority, RequestScheduler
from fpl_gateway.orchestrator.ttl_policy import TTL_POLICIES, ResourceClass, TTLPolicy
from fpl_gateway.utils.exceptions import (
    APIError,
    CacheError,
    FPLGatewayError,
    SchemaMismatchError,
)
from fpl_gateway.utils.logger import get_schema_logger

logger = logging.getLogger(__name__)


# Abstract operation names shared by adapters and the coordinator
OP_REFERENCE = "reference_data"
OP_FIXTURES = "fixtures"
OP_LIVE = "live_scores"
OP_TEAMS = "teams"
OP_PLAYERS = "players"
OP_CURRENT_ROUND = "current_round"
OP_STANDINGS = "standings"

ALL_OPERATIONS = frozenset({
    OP_REFERENCE,
    OP_FIXTURES,
    OP_LIVE,
    OP_TEAMS,
    OP_PLAYERS,
    OP_CURRENT_ROUND,
    OP_STANDINGS,
})

# How the current task may satisfy reads
READ_NETWORK = "network"
READ_CACHED = "cached"  # fresh cache entries only, no network
READ_STALE = "stale"  # any cache entry, expired or not, no network

_read_mode: ContextVar[str] = ContextVar("read_mode", default=READ_NETWORK)


def cache_only() -> bool:
    """Whether the current task is inside cached_reads() or stale_reads()."""
    return _read_mode.get() != READ_NETWORK


@contextmanager
def _reading(mode: str):
    token = _read_mode.set(mode)
    try:
        yield
    finally:
        _read_mode.reset(token)


def make_resource_key(path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Stable cache key for a path and its query parameters."""
    path = "/" + path.strip("/")
    if not params:
        return path
    return f"{path}?{urlencode(sorted((k, str(v)) for k, v in params.items()))}"


class SourceAdapter(ABC):
    """
    Base class for upstream providers.

    Owns one set of resilience components for its source: rate limiter,
    circuit breaker, cache partition, deduplicator and dispatch worker.

    Attributes:
        name: Source name
        supported_operations: Operations this provider implements
        config: Source configuration
    """

    supported_operations: FrozenSet[str] = frozenset()

    def __init__(
        self,
        config: SourceConfig,
        http_client: Optional[SourceHttpClient] = None,
        cache: Optional[TieredCache] = None,
        limiter: Optional[RateLimiter] = None,
        breaker: Optional[CircuitBreaker] = None,
        policies: Mapping[ResourceClass, TTLPolicy] = TTL_POLICIES,
        db_path: Optional[Path] = None,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Initialize adapter and its per-source components.

        Args:
            config: Source configuration
            http_client: Transport (defaults to SourceHttpClient(config))
            cache: Cache partition (defaults to TieredCache(config.name))
            limiter: Rate limiter (defaults to config quotas)
            breaker: Circuit breaker (defaults to config thresholds)
            policies: TTL policy table
            db_path: SQLite path for the default cache
            clock: Epoch-seconds clock shared by all components
            sleep: Async sleep used by the dispatch worker
        """
        self.config = config
        self.name = config.name
        self.policies = policies
        self._clock = clock or time.time

        self.http = http_client or SourceHttpClient(config)
        self.cache = cache or TieredCache(
            config.name, db_path=db_path, policies=policies, clock=self._clock
        )
        self.limiter = limiter or RateLimiter(
            config.name,
            max_per_minute=config.rate_limit_per_minute,
            max_per_day=config.rate_limit_per_day,
            clock=self._clock,
        )
        self.breaker = breaker or CircuitBreaker(
            config.name,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
            clock=self._clock,
        )
        self.dedup = RequestDeduplicator()
        self.scheduler = RequestScheduler(
            config.name,
            self.limiter,
            self.breaker,
            max_retries=config.max_retries,
            max_defer_seconds=config.max_defer_seconds,
            poll_interval=config.poll_interval,
            base_request_delay=config.base_request_delay,
            clock=self._clock,
            sleep=sleep,
        )

        self._stats = {
            "cache_hits": 0,
            "cache_misses": 0,
            "upstream_calls": 0,
            "not_modified": 0,
            "stale_served": 0,
        }

    def supports(self, operation: str) -> bool:
        return operation in self.supported_operations

    @property
    def is_configured(self) -> bool:
        return self.config.is_configured

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        """Start the dispatch worker."""
        await self.scheduler.start()

    async def close(self) -> None:
        """Stop the worker and release network and database resources."""
        await self.scheduler.stop()
        await self.http.close()
        self.cache.close()

    # ==================== PIPELINE ====================

    @staticmethod
    def cached_reads():
        """Serve only fresh cache entries, without network traffic, inside this block."""
        return _reading(READ_CACHED)

    @staticmethod
    def stale_reads():
        """Serve expired cache entries without network traffic inside this block."""
        return _reading(READ_STALE)

    async def _fetch_resource(
        self,
        path: str,
        resource_class: ResourceClass,
        params: Optional[Dict[str, Any]] = None,
        priority: RequestPriority = RequestPriority.MEDIUM,
        ttl: Optional[float] = None,
    ) -> Any:
        """
        Fetch one raw payload through the full pipeline.

        Args:
            path: Endpoint path below the base URL
            resource_class: TTL category
            params: Query parameters
            priority: Queue tier
            ttl: Explicit TTL (defaults to the policy, shortened during matches)

        Returns:
            Raw provider payload

        Raises:
            CircuitOpenError: Breaker rejected the call
            RateLimitedError: Quota exhausted beyond the deferral window
            TransientNetworkError, UpstreamServerError: Retries exhausted
            SchemaMismatchError: Payload does not match the expected envelope
            APIError: Non-retryable upstream error
        """
        resource_key = make_resource_key(path, params)

        mode = _read_mode.get()
        if mode == READ_CACHED:
            return self._read_cached(resource_key)
        if mode == READ_STALE:
            return self._read_stale(resource_key)

        return await self.dedup.run(
            resource_key,
            lambda: self._load(resource_key, path, resource_class, params, priority, ttl),
        )

    def _read_cached(self, resource_key: str) -> Any:
        try:
            entry = self.cache.get(resource_key)
        except CacheError as e:
            logger.warning(f"Cache read failed for {resource_key}: {e}")
            entry = None

        if entry is None:
            raise APIError(
                f"No fresh cached entry for {resource_key}",
                endpoint=resource_key,
                source=self.name,
            )
        self._stats["cache_hits"] += 1
        return entry.payload

    def _read_stale(self, resource_key: str) -> Any:
        entry = self._peek(resource_key)
        if entry is None:
            raise APIError(
                f"No cached entry for {resource_key}",
                endpoint=resource_key,
                source=self.name,
            )
        self._stats["stale_served"] += 1
        logger.warning(
            f"Serving stale {self.name} entry {resource_key}",
            extra={"age_seconds": round(self._clock() - entry.fetched_at, 1)},
        )
        return entry.payload

    def _peek(self, resource_key: str) -> Optional[CacheEntry]:
        try:
            return self.cache.peek(resource_key)
        except CacheError as e:
            logger.warning(f"Cache peek failed for {resource_key}: {e}")
            return None

    async def _load(
        self,
        resource_key: str,
        path: str,
        resource_class: ResourceClass,
        params: Optional[Dict[str, Any]],
        priority: RequestPriority,
        ttl: Optional[float],
    ) -> Any:
        try:
            entry = self.cache.get(resource_key)
        except CacheError as e:
            logger.warning(f"Cache read failed for {resource_key}, treating as miss: {e}")
            entry = None

        if entry is not None:
            self._stats["cache_hits"] += 1
            return entry.payload
        self._stats["cache_misses"] += 1

        # Fail fast before queueing
        if not self.breaker.is_available():
            raise self.breaker.rejection_error()

        if not self.scheduler.is_running:
            await self.scheduler.start()

        validators = self._peek(resource_key)
        future = self.scheduler.submit(
            resource_key,
            lambda: self._fetch_upstream(
                resource_key, path, resource_class, params, ttl, validators
            ),
            priority,
        )
        return await future

    async def _fetch_upstream(
        self,
        resource_key: str,
        path: str,
        resource_class: ResourceClass,
        params: Optional[Dict[str, Any]],
        ttl: Optional[float],
        validators: Optional[CacheEntry],
    ) -> Any:
        self._stats["upstream_calls"] += 1
        try:
            response = await self.http.get(
                path,
                params=params,
                etag=validators.etag if validators else None,
                last_modified=validators.last_modified if validators else None,
            )
        except SchemaMismatchError as e:
            self._log_mismatch(resource_key, e)
            raise
        self.limiter.sync_from_headers(response.rate_limit_remaining, response.rate_limit_limit)

        if response.not_modified:
            self._stats["not_modified"] += 1
            entry = self.cache.revalidate(resource_key, ttl)
            if entry is None:
                if validators is None:
                    raise APIError(
                        "304 Not Modified for an unconditional request",
                        endpoint=path,
                        status_code=304,
                        source=self.name,
                    )
                # Entry evicted since the validators were read
                logger.info(f"{self.name} {resource_key} evicted before 304, refetching")
                self.limiter.record()
                return await self._fetch_upstream(
                    resource_key, path, resource_class, params, ttl, None
                )
            logger.debug(f"{self.name} {resource_key} not modified, cache refreshed")
            return entry.payload

        try:
            self._validate_payload(resource_class, response.data)
        except SchemaMismatchError as e:
            self._log_mismatch(resource_key, e)
            raise

        if ttl is None:
            ttl = self.policies[resource_class].resolve(
                self._match_active(resource_class, response.data)
            )

        try:
            self.cache.set(
                resource_key,
                response.data,
                resource_class,
                ttl=ttl,
                etag=response.etag,
                last_modified=response.last_modified,
            )
        except CacheError as e:
            logger.warning(f"Cache write failed for {resource_key}: {e}")

        return response.data

    def _log_mismatch(self, resource_key: str, error: SchemaMismatchError) -> None:
        get_schema_logger().error(
            f"{self.name}: {error.message}",
            extra={
                "source": self.name,
                "endpoint": resource_key,
                "field": error.details.get("field"),
            },
        )

    def _match_active(self, resource_class: ResourceClass, payload: Any) -> bool:
        """Whether a freshly fetched payload shows a match in progress."""
        return False

    @abstractmethod
    def _validate_payload(self, resource_class: ResourceClass, payload: Any) -> None:
        """Raise SchemaMismatchError if the payload envelope is not the expected shape."""

    # ==================== OPERATIONS ====================

    def _unsupported(self, operation: str) -> FPLGatewayError:
        return FPLGatewayError(
            f"{self.name} does not support {operation}",
            {"source": self.name, "operation": operation},
        )

    async def fetch_reference_data(self):
        raise self._unsupported(OP_REFERENCE)

    async def fetch_live_scores(self, round_id: int):
        raise self._unsupported(OP_LIVE)

    async def fetch_current_round(self):
        raise self._unsupported(OP_CURRENT_ROUND)

    async def fetch_standings(self):
        raise self._unsupported(OP_STANDINGS)

    @abstractmethod
    async def fetch_fixtures(self, round_id: Optional[int] = None):
        """Fixtures for the season, or for one round."""

    @abstractmethod
    async def fetch_teams(self):
        """All clubs in the competition."""

    @abstractmethod
    async def fetch_players(self):
        """All squad players."""

    async def probe(self) -> bool:
        """
        Health check used by the maintenance scheduler.

        Goes through the normal cache-first pipeline so it never spends
        quota while the teams entry is fresh.
        """
        await self.fetch_teams()
        return True

    # ==================== MONITORING ====================

    def get_statistics(self) -> dict:
        """Snapshot of every per-source component."""
        return {
            "name": self.name,
            "configured": self.is_configured,
            "supported_operations": sorted(self.supported_operations),
            "counters": dict(self._stats),
            "rate_limit": self.limiter.get_statistics(),
            "circuit_breaker": self.breaker.get_statistics(),
            "cache": self.cache.get_statistics(),
            "queue": self.scheduler.get_statistics(),
            "dedup": self.dedup.get_statistics(),
            "http": self.http.get_stats(),
        }

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name}, breaker={self.breaker.state.value})"
