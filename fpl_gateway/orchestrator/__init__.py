"""
Orchestrator Module

Resilience components and multi-source coordination.

Components:
    - TieredCache: LRU memory tier over a SQLite tier with per-class TTLs
    - RateLimiter: Minute and UTC-day request windows per source
    - CircuitBreaker: Fault tolerance and resilience pattern
    - RequestDeduplicator: Single-flight for identical concurrent requests
    - RequestScheduler: Priority queue and dispatch worker per source
    - HybridDataSource: Per-operation routing with automatic fallback
    - MaintenanceScheduler: APScheduler-based cache sweep and health checks
"""

__all__ = [
    "TieredCache",
    "RateLimiter",
    "CircuitBreaker",
    "RequestDeduplicator",
    "RequestScheduler",
    "HybridDataSource",
    "MaintenanceScheduler",
]

# Lazy imports to avoid circular dependencies
def __getattr__(name):
    if name == "TieredCache":
        from .cache_manager import TieredCache
        return TieredCache
    elif name == "RateLimiter":
        from .rate_limiter import RateLimiter
        return RateLimiter
    elif name == "CircuitBreaker":
        from .circuit_breaker import CircuitBreaker
        return CircuitBreaker
    elif name == "RequestDeduplicator":
        from .deduplicator import RequestDeduplicator
        return RequestDeduplicator
    elif name == "RequestScheduler":
        from .request_queue import RequestScheduler
        return RequestScheduler
    elif name == "HybridDataSource":
        from .hybrid_source import HybridDataSource
        return HybridDataSource
    elif name == "MaintenanceScheduler":
        from .scheduler import MaintenanceScheduler
        return MaintenanceScheduler
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
