"""
Hybrid Data Source Orchestrator.

Routes each data operation to the preferred upstream provider and falls
back to the next one when a source is rate limited, failing or behind an
open circuit. RapidAPI FPL is the scoring-critical source; API-Football
backs it up for fixtures and clubs.
"""

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from fpl_gateway.clients.api_football import APIFootballAdapter
from fpl_gateway.clients.base import (
    OP_CURRENT_ROUND,
    OP_FIXTURES,
    OP_LIVE,
    OP_PLAYERS,
    OP_REFERENCE,
    OP_STANDINGS,
    OP_TEAMS,
    SourceAdapter,
)
from fpl_gateway.clients.rapidapi_fpl import RapidAPIFPLAdapter
from fpl_gateway.config import AppConfig, ResilienceConfig, SchedulerConfig, SourceConfig
from fpl_gateway.normalizer.schemas import DataSource
from fpl_gateway.orchestrator.circuit_breaker import CircuitState
from fpl_gateway.orchestrator.events import (
    CircuitOpened,
    EventListener,
    EventPublisher,
    SourceRateLimited,
    SourceStatusUpdated,
    SourceSwitched,
)
from fpl_gateway.orchestrator.rate_limiter import MINUTE_SECONDS
from fpl_gateway.orchestrator.scheduler import MaintenanceScheduler
from fpl_gateway.orchestrator.ttl_policy import validate_ttl_policies
from fpl_gateway.utils.exceptions import (
    CircuitOpenError,
    FPLGatewayError,
    RateLimitedError,
    SchemaMismatchError,
    SourcesExhaustedError,
    SourceUnavailableError,
)

logger = logging.getLogger(__name__)

RAPIDAPI_FPL = DataSource.RAPIDAPI_FPL.value
API_FOOTBALL = DataSource.API_FOOTBALL.value

# Preferred source order per operation
DEFAULT_ROUTES: Dict[str, Tuple[str, ...]] = {
    OP_REFERENCE: (RAPIDAPI_FPL,),
    OP_PLAYERS: (RAPIDAPI_FPL,),
    OP_LIVE: (RAPIDAPI_FPL,),
    OP_CURRENT_ROUND: (RAPIDAPI_FPL,),
    OP_TEAMS: (RAPIDAPI_FPL, API_FOOTBALL),
    OP_FIXTURES: (API_FOOTBALL, RAPIDAPI_FPL),
    OP_STANDINGS: (API_FOOTBALL,),
}


class RoutingPolicy:
    """
    Static preferred source order per operation.

    Example:
        >>> policy = RoutingPolicy({"teams": ("api_football", "rapidapi_fpl")})
        >>> policy.order("teams")
        ('api_football', 'rapidapi_fpl')
    """

    def __init__(self, routes: Optional[Mapping[str, Sequence[str]]] = None):
        self.routes: Dict[str, Tuple[str, ...]] = dict(DEFAULT_ROUTES)
        for operation, sources in (routes or {}).items():
            self.routes[operation] = tuple(sources)

    def order(self, operation: str) -> Tuple[str, ...]:
        return self.routes.get(operation, ())

    def to_dict(self) -> Dict[str, List[str]]:
        return {operation: list(sources) for operation, sources in self.routes.items()}


@dataclass
class SourceStatus:
    """Coordinator view of one source's health.

    Attributes:
        name: Source name
        available: Whether the source is tried at all
        error_count: Consecutive failures since the last success
        next_available_at: Epoch seconds when an unavailable source is retried
        last_error: Description of the latest failure
        last_error_at: Epoch seconds of the latest failure
        last_success_at: Epoch seconds of the latest success
        rate_limit_hit: Whether the latest failure was a quota rejection
    """

    name: str
    available: bool = True
    error_count: int = 0
    next_available_at: Optional[float] = None
    last_error: Optional[str] = None
    last_error_at: Optional[float] = None
    last_success_at: Optional[float] = None
    rate_limit_hit: bool = False

    def to_dict(self) -> dict:
        data = asdict(self)
        data["next_available_at"] = _iso(self.next_available_at)
        data["last_success_at"] = _iso(self.last_success_at)
        data["last_error_at"] = _iso(self.last_error_at)
        return data


class HybridDataSource:
    """
    Hybrid data source with per-operation routing and automatic fallback.

    Routing:
        reference data, players, live scores, current round → RapidAPI FPL
        teams → RapidAPI FPL, then API-Football
        fixtures → API-Football (when configured), then RapidAPI FPL
        standings → API-Football

    Features:
        - Per-source rate limiting, circuit breaking and two-tier caching
        - Source status with error cooldowns and lazy recovery
        - Manual override with switch_source()
        - Observer events for switches, status changes, quota and circuit trips
        - Optional stale-on-error serving from expired cache entries
        - Periodic cache sweep and health probes

    Only SourcesExhaustedError and SchemaMismatchError leave the public
    operations.

    Example:
        >>> async with HybridDataSource.from_config() as source:
        ...     fixtures = await source.get_fixtures(round_id=5)
        ...     stats = source.get_statistics()
        ...     print(stats["last_served"]["fixtures"])
    """

    def __init__(
        self,
        adapters: Iterable[SourceAdapter],
        routing: Optional[RoutingPolicy] = None,
        max_source_errors: Optional[int] = None,
        error_cooldown: Optional[float] = None,
        serve_stale_on_error: Optional[bool] = None,
        maintenance: Optional[MaintenanceScheduler] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        """
        Initialize coordinator.

        Args:
            adapters: Source adapters, keyed by their name
            routing: Preferred source order per operation
            max_source_errors: Consecutive errors before a cooldown (default: 2)
            error_cooldown: Seconds a failing source is skipped (default: 300)
            serve_stale_on_error: Serve expired cache entries when every source fails
            maintenance: Periodic cache sweep and health probe scheduler
            clock: Epoch-seconds clock
        """
        self.adapters: Dict[str, SourceAdapter] = {a.name: a for a in adapters}
        self.routing = routing or RoutingPolicy()
        self.max_source_errors = max_source_errors or ResilienceConfig.MAX_SOURCE_ERRORS
        self.error_cooldown = (
            error_cooldown if error_cooldown is not None
            else ResilienceConfig.ERROR_COOLDOWN_SECONDS
        )
        self.serve_stale_on_error = (
            serve_stale_on_error if serve_stale_on_error is not None
            else ResilienceConfig.SERVE_STALE_ON_ERROR
        )
        self.maintenance = maintenance
        self._clock = clock or time.time

        self.events = EventPublisher()
        self._status: Dict[str, SourceStatus] = {
            name: SourceStatus(name) for name in self.adapters
        }
        self._override: Optional[str] = None
        self._last_served: Dict[str, str] = {}
        self._started = False

        for adapter in self.adapters.values():
            adapter.breaker.add_listener(self._on_breaker_change)
        if self.maintenance is not None:
            self.maintenance.add_probe_listener(self._on_probe_success)

        self._stats = self._empty_stats()

        logger.info(
            "HybridDataSource initialized",
            extra={
                "sources": list(self.adapters),
                "configured": [n for n, a in self.adapters.items() if a.is_configured],
                "serve_stale_on_error": self.serve_stale_on_error,
            },
        )

    def _empty_stats(self) -> dict:
        return {
            "total_requests": 0,
            "successes": 0,
            "failures": 0,
            "fallbacks": 0,
            "stale_served": 0,
            "served_by": {name: 0 for name in self.adapters},
        }

    @classmethod
    def from_config(
        cls,
        db_path: Optional[Path] = None,
        api_football_key: Optional[str] = None,
        enable_maintenance: Optional[bool] = None,
    ) -> "HybridDataSource":
        """
        Build a coordinator from environment settings.

        Args:
            db_path: SQLite cache path (defaults to CacheConfig.DB_PATH)
            api_football_key: Override for API_FOOTBALL_KEY
            enable_maintenance: Override for MAINTENANCE_ENABLED

        Raises:
            ConfigurationError: If the TTL policy table is invalid
        """
        validate_ttl_policies()

        is_valid, errors = AppConfig.validate()
        if not is_valid:
            for error in errors:
                logger.warning(f"Configuration issue: {error}")

        adapters: List[SourceAdapter] = []
        for source_config in AppConfig.get_source_configs(api_football_key):
            adapters.append(cls._build_adapter(source_config, db_path))

        if enable_maintenance is None:
            enable_maintenance = SchedulerConfig.MAINTENANCE_ENABLED
        maintenance = MaintenanceScheduler(adapters) if enable_maintenance else None

        return cls(adapters, maintenance=maintenance)

    @staticmethod
    def _build_adapter(config: SourceConfig, db_path: Optional[Path]) -> SourceAdapter:
        if config.name == API_FOOTBALL:
            return APIFootballAdapter(config, db_path=db_path)
        return RapidAPIFPLAdapter(config, db_path=db_path)

    # ==================== LIFECYCLE ====================

    async def start(self) -> None:
        """Start per-source dispatch workers and the maintenance scheduler."""
        if self._started:
            return
        for adapter in self.adapters.values():
            await adapter.start()
        if self.maintenance is not None:
            self.maintenance.start()
        self._started = True
        logger.info("HybridDataSource started")

    async def shutdown(self) -> None:
        """Stop workers and scheduler, close sessions and cache databases."""
        if self.maintenance is not None:
            self.maintenance.stop()
        for adapter in self.adapters.values():
            await adapter.close()
        self._started = False
        logger.info("HybridDataSource shutdown complete")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    # ==================== PUBLIC OPERATIONS ====================

    async def get_reference_data(self):
        """Rounds, teams and players in one bundle."""
        return await self._execute(OP_REFERENCE, lambda a: a.fetch_reference_data())

    async def get_fixtures(self, round_id: Optional[int] = None):
        """Fixtures for the season, or for one round."""
        return await self._execute(OP_FIXTURES, lambda a: a.fetch_fixtures(round_id))

    async def get_live_scores(self, round_id: int):
        """Live player points for a round."""
        return await self._execute(OP_LIVE, lambda a: a.fetch_live_scores(round_id))

    async def get_teams(self):
        return await self._execute(OP_TEAMS, lambda a: a.fetch_teams())

    async def get_players(self):
        return await self._execute(OP_PLAYERS, lambda a: a.fetch_players())

    async def get_current_round(self):
        return await self._execute(OP_CURRENT_ROUND, lambda a: a.fetch_current_round())

    async def get_standings(self):
        """League table."""
        return await self._execute(OP_STANDINGS, lambda a: a.fetch_standings())

    # ==================== ROUTING ====================

    def candidates(self, operation: str) -> List[str]:
        """
        Sources to try for an operation, in order.

        Sources that do not implement the operation are dropped. Sources
        without credentials are dropped while a configured one remains. A
        manual override goes first when it supports the operation.
        """
        ordered = [
            name for name in self.routing.order(operation)
            if name in self.adapters and self.adapters[name].supports(operation)
        ]

        configured = [name for name in ordered if self.adapters[name].is_configured]
        if configured:
            ordered = configured

        if self._override and self._override in ordered:
            ordered.remove(self._override)
            ordered.insert(0, self._override)

        return ordered

    def switch_source(self, name: str) -> None:
        """
        Prefer a source for every operation it supports.

        Raises:
            SourceUnavailableError: Unknown source, or source in cooldown
        """
        if name not in self.adapters or not self.is_source_available(name):
            status = self._status.get(name)
            raise SourceUnavailableError(
                name, status.next_available_at if status else None
            )

        previous = self._override
        self._override = name

        logger.info(f"Manually switched source preference from {previous} to {name}")
        self.events.publish(
            SourceSwitched(
                source=name, previous=previous, reason="manual", timestamp=self._clock()
            )
        )

    def clear_override(self) -> None:
        """Return to the static routing policy."""
        if self._override is not None:
            logger.info(f"Cleared manual source override ({self._override})")
        self._override = None

    @property
    def current_override(self) -> Optional[str]:
        return self._override

    # ==================== SOURCE STATUS ====================

    def is_source_available(self, name: str) -> bool:
        """Whether a source may be tried now. Restores expired cooldowns."""
        status = self._status[name]
        if status.available:
            return True

        now = self._clock()
        if status.next_available_at is not None and now >= status.next_available_at:
            status.available = True
            status.error_count = 0
            status.next_available_at = None
            status.rate_limit_hit = False
            logger.info(f"Source {name} is available again")
            self._publish_status(status)
            return True

        return False

    def get_source_status(self, name: str) -> SourceStatus:
        self.is_source_available(name)
        return self._status[name]

    def _publish_status(self, status: SourceStatus) -> None:
        self.events.publish(
            SourceStatusUpdated(
                source=status.name,
                available=status.available,
                error_count=status.error_count,
                next_available_at=status.next_available_at,
                timestamp=self._clock(),
            )
        )

    def _record_success(self, name: str) -> None:
        status = self._status[name]
        status.last_success_at = self._clock()
        if status.error_count or not status.available or status.rate_limit_hit:
            status.available = True
            status.error_count = 0
            status.next_available_at = None
            status.rate_limit_hit = False
            status.last_error = None
            self._publish_status(status)

    def _record_error(self, name: str, error: FPLGatewayError) -> None:
        status = self._status[name]
        status.error_count += 1
        status.last_error = f"{type(error).__name__}: {error.message}"
        status.last_error_at = self._clock()

        if status.error_count >= self.max_source_errors and status.available:
            status.available = False
            status.next_available_at = self._clock() + self.error_cooldown
            logger.warning(
                f"Source {name} disabled after {status.error_count} errors",
                extra={"cooldown_seconds": self.error_cooldown},
            )
            self._publish_status(status)

    def _record_rate_limited(self, name: str, error: RateLimitedError) -> None:
        adapter = self.adapters[name]
        now = self._clock()

        reset_at = adapter.limiter.next_reset_at()
        if error.next_available_at is not None:
            reset_at = max(reset_at, error.next_available_at)
        if reset_at <= now:
            reset_at = now + (error.retry_after or MINUTE_SECONDS)

        status = self._status[name]
        status.available = False
        status.rate_limit_hit = True
        status.next_available_at = reset_at
        status.last_error = f"{type(error).__name__}: {error.message}"
        status.last_error_at = self._clock()

        day_exhausted = adapter.limiter.day_exhausted
        logger.warning(
            f"Source {name} rate limited until {_iso(reset_at)}",
            extra={"day_exhausted": day_exhausted},
        )
        self.events.publish(
            SourceRateLimited(
                source=name,
                next_available_at=reset_at,
                day_exhausted=day_exhausted,
                timestamp=now,
            )
        )
        self._publish_status(status)

    def _record_circuit_open(self, name: str, error: CircuitOpenError) -> None:
        breaker = self.adapters[name].breaker
        now = self._clock()

        status = self._status[name]
        status.available = False
        status.next_available_at = (
            error.next_attempt_at or breaker.next_attempt_at or now + breaker.recovery_timeout
        )
        status.last_error = f"{type(error).__name__}: {error.message}"
        status.last_error_at = self._clock()
        self._publish_status(status)

    def _on_breaker_change(self, name: str, old_state: CircuitState, new_state: CircuitState):
        if new_state != CircuitState.OPEN:
            return
        self.events.publish(
            CircuitOpened(
                source=name,
                next_attempt_at=self.adapters[name].breaker.next_attempt_at,
                timestamp=self._clock(),
            )
        )

    def _on_probe_success(self, name: str) -> None:
        if name not in self._status:
            return
        if not self._status[name].available:
            logger.info(f"Source {name} passed its health check, ending cooldown")
        self._record_success(name)

    def _primary(self, operation: str, candidates: List[str]) -> str:
        """First candidate in routing order, ignoring any manual override."""
        routed = [name for name in self.routing.order(operation) if name in candidates]
        return routed[0] if routed else candidates[0]

    def _note_served(self, operation: str, name: str, primary: str) -> None:
        previous = self._last_served.get(operation)
        self._last_served[operation] = name
        self._stats["served_by"][name] = self._stats["served_by"].get(name, 0) + 1

        if name == self._override and name != primary:
            reason = "manual"
        elif name != primary:
            reason = "fallback"
            self._stats["fallbacks"] += 1
        else:
            reason = "recovered"

        if name == primary and previous in (None, name):
            return
        if name == previous:
            return

        logger.info(
            f"{operation} served by {name} instead of {previous or primary}",
            extra={"reason": reason},
        )
        self.events.publish(
            SourceSwitched(
                source=name,
                previous=previous or primary,
                operation=operation,
                reason=reason,
                timestamp=self._clock(),
            )
        )

    # ==================== EXECUTION ====================

    async def _execute(
        self,
        operation: str,
        call: Callable[[SourceAdapter], Awaitable],
    ):
        """
        Try each candidate source in order.

        Raises:
            SchemaMismatchError: A source answered with an unmappable payload
                and no other source succeeded
            SourcesExhaustedError: Every candidate failed or was unavailable
        """
        self._stats["total_requests"] += 1
        candidates = self.candidates(operation)
        primary = self._primary(operation, candidates) if candidates else None
        errors: Dict[str, Exception] = {}

        for name in candidates:
            adapter = self.adapters[name]

            if not self.is_source_available(name):
                # Fresh entries are still served while the source cools down
                try:
                    with SourceAdapter.cached_reads():
                        result = await call(adapter)
                except FPLGatewayError:
                    status = self._status[name]
                    errors[name] = SourceUnavailableError(name, status.next_available_at)
                    logger.debug(f"Skipping unavailable source {name} for {operation}")
                    continue
                self._note_served(operation, name, primary)
                self._stats["successes"] += 1
                return result

            try:
                result = await call(adapter)
            except RateLimitedError as e:
                errors[name] = e
                self._record_rate_limited(name, e)
            except CircuitOpenError as e:
                errors[name] = e
                self._record_circuit_open(name, e)
            except FPLGatewayError as e:
                errors[name] = e
                self._record_error(name, e)
                logger.warning(
                    f"{name} failed for {operation}: {e}",
                    extra={"source": name, "operation": operation, "error": type(e).__name__},
                )
            else:
                self._record_success(name)
                self._note_served(operation, name, primary)
                self._stats["successes"] += 1
                return result

        if self.serve_stale_on_error:
            for name in candidates:
                try:
                    with SourceAdapter.stale_reads():
                        result = await call(self.adapters[name])
                except FPLGatewayError as e:
                    logger.debug(f"No stale {operation} from {name}: {e}")
                    continue
                self._stats["stale_served"] += 1
                logger.warning(
                    f"Serving stale {operation} from {name} after all sources failed",
                    extra={"errors": {n: type(e).__name__ for n, e in errors.items()}},
                )
                return result

        self._stats["failures"] += 1

        for error in errors.values():
            if isinstance(error, SchemaMismatchError):
                raise error

        logger.error(
            f"All data sources failed for {operation}",
            extra={"errors": {n: str(e) for n, e in errors.items()}},
        )
        raise SourcesExhaustedError(operation, errors)

    # ==================== OBSERVERS ====================

    def add_listener(self, listener: EventListener) -> None:
        """Register a callback receiving every coordinator event."""
        self.events.add_listener(listener)

    def remove_listener(self, listener: EventListener) -> None:
        self.events.remove_listener(listener)

    # ==================== MONITORING ====================

    def get_statistics(self) -> dict:
        """
        Get comprehensive statistics for the coordinator.

        Returns:
            Dictionary with per-source status and component snapshots,
            last served source per operation, recent switches and
            recommendations
        """
        sources = {}
        for name, adapter in self.adapters.items():
            sources[name] = {
                "status": self.get_source_status(name).to_dict(),
                **adapter.get_statistics(),
            }

        return {
            "override": self._override,
            "routing": self.routing.to_dict(),
            "counters": {**self._stats, "served_by": dict(self._stats["served_by"])},
            "sources": sources,
            "last_served": dict(self._last_served),
            "recent_switches": self.events.recent("source_switched"),
            "recent_events": self.events.recent(),
            "maintenance": self.maintenance.get_statistics() if self.maintenance else None,
            "recommendations": self.recommendations(),
        }

    def recommendations(self) -> List[str]:
        """Operator hints derived from configuration and source status."""
        tips = []

        football = self.adapters.get(API_FOOTBALL)
        if football is not None and not football.is_configured:
            tips.append("Add an API-Football key for fixture fallback and standings")

        fpl_status = self._status.get(RAPIDAPI_FPL)
        if fpl_status and fpl_status.rate_limit_hit:
            tips.append(
                "RapidAPI FPL rate limit hit - player data and scoring are affected. "
                "Increase cache TTLs."
            )
        if fpl_status and fpl_status.error_count > 0:
            tips.append("RapidAPI FPL is failing - player data and scoring accuracy are at risk")

        football_status = self._status.get(API_FOOTBALL)
        if football_status and football_status.rate_limit_hit:
            tips.append(
                "API-Football rate limit hit - fixtures fall back to RapidAPI FPL. "
                "Reduce fixture requests."
            )
        if football_status and football_status.error_count > 0:
            tips.append("API-Football is failing - fixtures fall back to RapidAPI FPL")

        for name, adapter in self.adapters.items():
            if adapter.breaker.state == CircuitState.OPEN:
                tips.append(f"Circuit for {name} is open - calls fail fast until it recovers")

        return tips

    def reset_statistics(self) -> dict:
        """
        Reset coordinator counters.

        Returns:
            Dictionary with pre-reset statistics
        """
        pre_reset_stats = self.get_statistics()
        self._stats = self._empty_stats()
        logger.info("HybridDataSource statistics reset")
        return pre_reset_stats

    def __repr__(self) -> str:
        return (
            f"HybridDataSource(sources={list(self.adapters)}, "
            f"requests={self._stats['total_requests']}, "
            f"fallbacks={self._stats['fallbacks']}, "
            f"override={self._override})"
        )


def _iso(ts: Optional[float]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
