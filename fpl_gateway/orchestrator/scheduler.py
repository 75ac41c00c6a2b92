"""
Periodic Maintenance Scheduler.

APScheduler-based housekeeping for the source adapters: expired cache
entries are swept and every configured source is probed for health.
"""

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from fpl_gateway.config import SchedulerConfig
from fpl_gateway.utils.exceptions import FPLGatewayError

logger = logging.getLogger(__name__)


class MaintenanceScheduler:
    """
    Background housekeeping on the running event loop.

    Scheduled Tasks:
        - Every 10 minutes: Sweep expired cache entries in every partition
        - Every 5 minutes: Probe each configured source

    A successful probe is reported to the probe listeners so a source in
    cooldown recovers early. A failed probe is logged only and never
    penalises a source.

    Example:
        >>> scheduler = MaintenanceScheduler(adapters)
        >>> scheduler.start()          # inside a running event loop
        >>> # ... let it run ...
        >>> scheduler.stop()
    """

    def __init__(
        self,
        adapters: Iterable,
        cache_sweep_interval: Optional[float] = None,
        health_check_interval: Optional[float] = None,
    ):
        """
        Initialize maintenance scheduler.

        Args:
            adapters: Source adapters to maintain
            cache_sweep_interval: Seconds between cache sweeps (default: 600)
            health_check_interval: Seconds between health probes (default: 300)
        """
        self.adapters = list(adapters)
        self.cache_sweep_interval = cache_sweep_interval or SchedulerConfig.CACHE_SWEEP_INTERVAL
        self.health_check_interval = (
            health_check_interval or SchedulerConfig.HEALTH_CHECK_INTERVAL
        )

        self.scheduler: Optional[AsyncIOScheduler] = None
        self._is_running = False

        self._last_cache_sweep: Optional[datetime] = None
        self._last_health_check: Optional[datetime] = None
        self._last_probe_results: Dict[str, bool] = {}
        self._probe_listeners: List[Callable[[str], None]] = []

        self._stats = {
            "cache_sweeps": 0,
            "entries_swept": 0,
            "sweep_failures": 0,
            "health_checks": 0,
            "probes_succeeded": 0,
            "probes_failed": 0,
        }

        logger.info(
            f"MaintenanceScheduler initialized for {len(self.adapters)} sources",
            extra={
                "cache_sweep_interval": self.cache_sweep_interval,
                "health_check_interval": self.health_check_interval,
            },
        )

    def add_probe_listener(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the source name after each successful probe."""
        self._probe_listeners.append(listener)

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        """
        Start the scheduler on the current event loop.

        Configures two jobs:
            1. Cache sweep
            2. Source health check
        """
        if self._is_running:
            logger.warning("Maintenance scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            func=self.sweep_caches,
            trigger=IntervalTrigger(seconds=self.cache_sweep_interval),
            id="cache_sweep",
            name="Cache Sweep",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.add_job(
            func=self.check_health,
            trigger=IntervalTrigger(seconds=self.health_check_interval),
            id="health_check",
            name="Source Health Check",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._is_running = True

        logger.info(
            "Maintenance scheduler started",
            extra={"jobs": [job.id for job in self.scheduler.get_jobs()]},
        )

    def stop(self, wait: bool = False) -> None:
        """
        Stop the scheduler.

        Args:
            wait: Wait for running jobs to complete
        """
        if not self._is_running:
            return

        self.scheduler.shutdown(wait=wait)
        self._is_running = False
        logger.info("Maintenance scheduler stopped")

    async def sweep_caches(self) -> int:
        """
        Remove expired entries from every source's cache.

        Returns:
            Number of entries removed
        """
        removed = 0
        for adapter in self.adapters:
            try:
                removed += adapter.cache.sweep_expired()
            except FPLGatewayError as e:
                self._stats["sweep_failures"] += 1
                logger.error(f"Cache sweep failed for {adapter.name}: {e}")

        self._last_cache_sweep = datetime.now()
        self._stats["cache_sweeps"] += 1
        self._stats["entries_swept"] += removed

        logger.info(
            f"Cache sweep completed: {removed} entries removed",
            extra={"deleted_entries": removed},
        )
        return removed

    async def check_health(self) -> Dict[str, bool]:
        """
        Probe every configured source.

        Returns:
            Mapping of source name to probe outcome
        """
        results = {}
        for adapter in self.adapters:
            if not adapter.is_configured:
                continue
            try:
                results[adapter.name] = await adapter.probe()
            except FPLGatewayError as e:
                results[adapter.name] = False
                logger.warning(
                    f"Health check failed for {adapter.name}: {e}",
                    extra={"source": adapter.name, "error": type(e).__name__},
                )
                continue
            if results[adapter.name]:
                self._notify_probe_success(adapter.name)

        self._last_health_check = datetime.now()
        self._last_probe_results = results
        self._stats["health_checks"] += 1
        self._stats["probes_succeeded"] += sum(1 for ok in results.values() if ok)
        self._stats["probes_failed"] += sum(1 for ok in results.values() if not ok)

        logger.info("Health check completed", extra={"results": results})
        return results

    def _notify_probe_success(self, name: str) -> None:
        for listener in self._probe_listeners:
            try:
                listener(name)
            except Exception as e:
                logger.error(f"Probe listener failed for {name}: {e}")

    def get_statistics(self) -> dict:
        """
        Get scheduler statistics.

        Returns:
            Dictionary with scheduler state, last activity and job counters
        """
        return {
            "is_running": self._is_running,
            "intervals": {
                "cache_sweep_seconds": self.cache_sweep_interval,
                "health_check_seconds": self.health_check_interval,
            },
            "last_activity": {
                "last_cache_sweep": (
                    self._last_cache_sweep.isoformat() if self._last_cache_sweep else None
                ),
                "last_health_check": (
                    self._last_health_check.isoformat() if self._last_health_check else None
                ),
                "last_probe_results": dict(self._last_probe_results),
            },
            "statistics": dict(self._stats),
        }

    def __repr__(self) -> str:
        return (
            f"MaintenanceScheduler(running={self._is_running}, "
            f"sweeps={self._stats['cache_sweeps']}, "
            f"health_checks={self._stats['health_checks']})"
        )
