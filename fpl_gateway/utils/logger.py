"""
Logging utility for the FPL data gateway.

Every module logs through ``logging.getLogger(__name__)`` with structured
``extra`` fields (source, operation, cooldowns). This module attaches the
handlers once, on the package logger, so all of those records end up in:
    - a size-rotating daily file (YYYYMMDD prefix) with the extra fields
      rendered as ``key=value`` pairs
    - a colorized console stream

Upstream traffic and schema drift get their own loggers and files so a
breaking provider change is never buried among transport errors.
"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional, Union

import colorlog

from fpl_gateway.config import LoggingConfig


PACKAGE_LOGGER_NAME = "fpl_gateway"
API_LOGGER_NAME = "fpl_gateway.api"
SCHEMA_LOGGER_NAME = "fpl_gateway.schema"

LOG_COLORS = {
    "DEBUG": "white",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "bold_red",
}

# Configured loggers by name
_LOGGER_CACHE: Dict[str, logging.Logger] = {}

# Attributes every LogRecord carries; anything else came in through extra=
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "log_color", "color_message"}


def record_context(record: logging.LogRecord) -> Dict[str, object]:
    """Fields passed to a logging call through ``extra``."""
    return {
        key: value for key, value in vars(record).items()
        if key not in _RECORD_ATTRS and not key.startswith("_")
    }


class ContextMixin:
    """Append a record's extra fields to the formatted line."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in sorted(context.items()))
        return f"{line} | {pairs}"


class ContextFormatter(ContextMixin, logging.Formatter):
    """Plain file formatter with extra fields."""


class ColoredContextFormatter(ContextMixin, colorlog.ColoredFormatter):
    """Console formatter with level colors and extra fields."""


class LoggerConfig:
    """
    Log directory, file naming and format settings.

    Read from LoggingConfig on construction so tests can patch it.
    """

    def __init__(self):
        self.log_dir = Path(LoggingConfig.LOG_DIR)
        self.log_level = getattr(logging, LoggingConfig.LOG_LEVEL.upper(), logging.INFO)
        self.max_bytes = LoggingConfig.MAX_LOG_SIZE
        self.backup_count = LoggingConfig.BACKUP_COUNT

        self.file_format = LoggingConfig.LOG_FORMAT
        self.date_format = LoggingConfig.DATE_FORMAT
        self.console_format = (
            "%(log_color)s%(levelname)-8s%(reset)s "
            "%(cyan)s%(name)s%(reset)s - %(message)s"
        )

        LoggingConfig.ensure_log_directory()

    def get_daily_log_filename(self, logger_name: str) -> str:
        """
        Daily log filename with a YYYYMMDD prefix.

        Example:
            >>> LoggerConfig().get_daily_log_filename("fpl_gateway.schema")
            '20261018_fpl_gateway_schema.log'
        """
        date_prefix = datetime.now().strftime("%Y%m%d")
        base_name = logger_name.replace(".", "_").lower()
        return f"{date_prefix}_{base_name}.log"

    def get_log_file_path(self, logger_name: str) -> Path:
        return self.log_dir / self.get_daily_log_filename(logger_name)

    def file_handler(self, logger_name: str) -> RotatingFileHandler:
        handler = RotatingFileHandler(
            filename=self.get_log_file_path(logger_name),
            maxBytes=self.max_bytes,
            backupCount=self.backup_count,
            encoding="utf-8",
        )
        # Files capture everything; the logger level decides what arrives
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(ContextFormatter(fmt=self.file_format, datefmt=self.date_format))
        return handler

    def console_handler(self) -> logging.StreamHandler:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(self.log_level)
        handler.setFormatter(
            ColoredContextFormatter(
                fmt=self.console_format,
                datefmt=self.date_format,
                log_colors=LOG_COLORS,
            )
        )
        return handler


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """
    Attach a rotating file handler and a colorized console handler.

    A configured logger does not propagate, so records of the dedicated
    api and schema loggers are not repeated by the package handlers.
    Repeated calls return the cached logger without adding handlers.

    Args:
        name: Logger name
        level: Log level (defaults to LOG_LEVEL)

    Returns:
        Configured logger instance

    Example:
        >>> logger = setup_logger("fpl_gateway")
        >>> logger.info("Gateway started", extra={"sources": 2})
    """
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]

    config = LoggerConfig()
    logger = logging.getLogger(name)
    logger.setLevel(level or config.log_level)

    if not logger.handlers:
        logger.addHandler(config.file_handler(name))
        logger.addHandler(config.console_handler())
    logger.propagate = False

    _LOGGER_CACHE[name] = logger
    return logger


def get_logger(name: str) -> logging.Logger:
    """Cached configured logger, created on first use."""
    if name in _LOGGER_CACHE:
        return _LOGGER_CACHE[name]
    return setup_logger(name)


def configure_package_logging(level: Optional[int] = None) -> logging.Logger:
    """
    Configure the ``fpl_gateway`` logger so every module's records are kept.

    Called once by entry points; library users may configure logging
    themselves instead.
    """
    return setup_logger(PACKAGE_LOGGER_NAME, level)


def set_level(level: Union[int, str]) -> None:
    """Change the level of every configured logger and its console output."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    for logger in _LOGGER_CACHE.values():
        logger.setLevel(level)
        for handler in logger.handlers:
            if not isinstance(handler, RotatingFileHandler):
                handler.setLevel(level)


def get_api_logger() -> logging.Logger:
    """
    Logger for upstream request and response lines.

    Example:
        >>> get_api_logger().debug("GET /api/bootstrap-static/ - Status: 200")
    """
    return get_logger(API_LOGGER_NAME)


def get_schema_logger() -> logging.Logger:
    """
    Logger for upstream schema drift.

    Example:
        >>> get_schema_logger().error("api_football: Missing required field: teams")
    """
    return get_logger(SCHEMA_LOGGER_NAME)
