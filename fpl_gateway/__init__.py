"""
FPL Data Gateway - Main Package

External data acquisition layer for a fantasy football platform. Fetches
reference and live football data from two rate-limited providers with
caching, request deduplication, circuit breaking and source fallback.

Modules:
    clients: HTTP transport and per-provider source adapters
    normalizer: Domain schemas and per-provider field mapping
    orchestrator: Rate limiting, caching, queueing and source coordination
    utils: Shared utilities and helpers
"""

__version__ = "1.0.0"
__author__ = "FPL Platform Team"

__all__ = [
    "__version__",
    "__author__",
]
