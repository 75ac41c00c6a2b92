"""
Utils Module

Shared utilities, helpers, and common functionality.

Components:
    - logger: Logging with daily files, rotation, context fields and colorized output
    - exceptions: Gateway exception hierarchy
"""

from fpl_gateway.utils.logger import (
    LoggerConfig,
    configure_package_logging,
    get_api_logger,
    get_logger,
    get_schema_logger,
    set_level,
    setup_logger,
)

__all__ = [
    # Logger utilities
    "LoggerConfig",
    "setup_logger",
    "get_logger",
    "get_api_logger",
    "get_schema_logger",
    "configure_package_logging",
    "set_level",
]
