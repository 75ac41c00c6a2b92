"""
Configuration management for the FPL data gateway.

Environment-based configuration using python-dotenv for secure credential handling.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class RapidAPIConfig:
    """Provider A: Fantasy Premier League API served through RapidAPI."""

    NAME: str = "rapidapi_fpl"
    API_KEY: str = os.getenv("RAPIDAPI_KEY", "")
    BASE_URL: str = os.getenv(
        "RAPIDAPI_FPL_BASE_URL", "https://fantasy-premier-league-fpl-api.p.rapidapi.com"
    )
    HOST: str = os.getenv("RAPIDAPI_FPL_HOST", "fantasy-premier-league-fpl-api.p.rapidapi.com")

    # Conservative defaults for the Basic plan (500 requests/month)
    RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RAPIDAPI_FPL_RATE_LIMIT_PER_MINUTE", "5"))
    RATE_LIMIT_PER_DAY: int = int(os.getenv("RAPIDAPI_FPL_RATE_LIMIT_PER_DAY", "15"))

    # Per-call deadline in seconds
    TIMEOUT: float = float(os.getenv("RAPIDAPI_FPL_TIMEOUT", "15"))

    @classmethod
    def is_configured(cls) -> bool:
        """Check if RapidAPI credentials are configured."""
        return bool(cls.API_KEY)


class APIFootballConfig:
    """Provider B: API-Football v3."""

    NAME: str = "api_football"
    API_KEY: str = os.getenv("API_FOOTBALL_KEY", "")
    BASE_URL: str = os.getenv("API_FOOTBALL_BASE_URL", "https://api-football-v1.p.rapidapi.com/v3")
    HOST: str = os.getenv("API_FOOTBALL_HOST", "api-football-v1.p.rapidapi.com")

    LEAGUE_ID: int = int(os.getenv("API_FOOTBALL_LEAGUE_ID", "39"))
    SEASON: int = int(os.getenv("API_FOOTBALL_SEASON", "2025"))

    # Free tier quotas
    RATE_LIMIT_PER_MINUTE: int = int(os.getenv("API_FOOTBALL_RATE_LIMIT_PER_MINUTE", "30"))
    RATE_LIMIT_PER_DAY: int = int(os.getenv("API_FOOTBALL_RATE_LIMIT_PER_DAY", "100"))

    TIMEOUT: float = float(os.getenv("API_FOOTBALL_TIMEOUT", "10"))

    @classmethod
    def is_configured(cls) -> bool:
        """Check if API-Football credentials are configured."""
        return bool(cls.API_KEY)


class ResilienceConfig:
    """Circuit breaker, retry and source-health settings."""

    # Consecutive failures before a breaker opens
    FAILURE_THRESHOLD: int = int(os.getenv("CIRCUIT_BREAKER_THRESHOLD", "5"))

    # Seconds an open breaker waits before allowing a half-open probe
    RECOVERY_TIMEOUT: float = float(os.getenv("CIRCUIT_BREAKER_TIMEOUT", "60"))

    # Maximum retry attempts for a queued request
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # Longest rate-limit wait a queued request is deferred for before failing over
    MAX_DEFER_SECONDS: float = float(os.getenv("MAX_DEFER_SECONDS", "60"))

    # Base politeness delay before each upstream call
    BASE_REQUEST_DELAY: float = float(os.getenv("BASE_REQUEST_DELAY", "0.3"))

    # Coordinator-level source health
    MAX_SOURCE_ERRORS: int = int(os.getenv("MAX_SOURCE_ERRORS", "2"))
    ERROR_COOLDOWN_SECONDS: float = float(os.getenv("ERROR_COOLDOWN_SECONDS", "300"))

    # Serve an expired cache entry when every source failed
    SERVE_STALE_ON_ERROR: bool = _env_bool("SERVE_STALE_ON_ERROR", "false")


class CacheConfig:
    """Cache and database configuration."""

    # Base directory for data storage
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", "data"))

    # SQLite database path for the persistent tier
    DB_PATH: Path = Path(os.getenv("CACHE_DB_PATH", str(DATA_DIR / "fpl_cache.db")))

    # Memory tier bounds
    MEMORY_MAX_ENTRIES: int = int(os.getenv("CACHE_MEMORY_MAX_ENTRIES", "500"))
    MEMORY_MAX_BYTES: int = int(os.getenv("CACHE_MEMORY_MAX_BYTES", str(50 * 1024 * 1024)))

    # Persistent tier bound
    PERSISTENT_MAX_ENTRIES: int = int(os.getenv("CACHE_PERSISTENT_MAX_ENTRIES", "5000"))

    @classmethod
    def ensure_directories(cls) -> None:
        """Create necessary directories if they don't exist."""
        cls.DATA_DIR.mkdir(parents=True, exist_ok=True)
        cls.DB_PATH.parent.mkdir(parents=True, exist_ok=True)


class SchedulerConfig:
    """Worker loop and maintenance job intervals."""

    # Queue worker poll interval in seconds
    QUEUE_POLL_INTERVAL: float = float(os.getenv("QUEUE_POLL_INTERVAL", "0.1"))

    # Expired cache sweep interval in seconds (10 minutes default)
    CACHE_SWEEP_INTERVAL: int = int(os.getenv("CACHE_SWEEP_INTERVAL", "600"))

    # Source health-check probe interval in seconds (5 minutes default)
    HEALTH_CHECK_INTERVAL: int = int(os.getenv("HEALTH_CHECK_INTERVAL", "300"))

    # Enable maintenance jobs on start
    MAINTENANCE_ENABLED: bool = _env_bool("MAINTENANCE_ENABLED", "true")


class LoggingConfig:
    """Logging configuration."""

    # Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Log directory
    LOG_DIR: Path = Path(os.getenv("LOG_DIR", "logs"))

    # Log file name
    LOG_FILE: str = os.getenv("LOG_FILE", "fpl_gateway.log")

    # Log format
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Date format
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"

    # Maximum log file size in bytes (10MB default)
    MAX_LOG_SIZE: int = int(os.getenv("MAX_LOG_SIZE", str(10 * 1024 * 1024)))

    # Number of backup log files to keep
    BACKUP_COUNT: int = int(os.getenv("BACKUP_COUNT", "5"))

    @classmethod
    def ensure_log_directory(cls) -> None:
        """Create log directory if it doesn't exist."""
        cls.LOG_DIR.mkdir(parents=True, exist_ok=True)

    @classmethod
    def get_log_file_path(cls) -> Path:
        """Get full path to log file."""
        return cls.LOG_DIR / cls.LOG_FILE


@dataclass
class SourceConfig:
    """Per-source settings injected into an adapter and its resilience components.

    Attributes:
        name: Source identifier used in cache keys and monitoring
        base_url: Provider base URL
        api_key: RapidAPI key (empty when unconfigured)
        host: Value for the X-RapidAPI-Host header
        rate_limit_per_minute: Minute burst guard
        rate_limit_per_day: Daily hard quota
        timeout: Per-call deadline in seconds
        max_retries: Retry budget per queued request
        failure_threshold: Consecutive failures before the breaker opens
        recovery_timeout: Breaker cooldown in seconds
        max_defer_seconds: Longest rate-limit deferral before failing over
        base_request_delay: Politeness delay before each call
        poll_interval: Worker poll interval
    """

    name: str
    base_url: str
    api_key: str = ""
    host: str = ""
    rate_limit_per_minute: int = 5
    rate_limit_per_day: int = 15
    timeout: float = 15.0
    max_retries: int = 3
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    max_defer_seconds: float = 60.0
    base_request_delay: float = 0.3
    poll_interval: float = 0.1

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def _resilience_defaults(cls) -> dict:
        return {
            "max_retries": ResilienceConfig.MAX_RETRIES,
            "failure_threshold": ResilienceConfig.FAILURE_THRESHOLD,
            "recovery_timeout": ResilienceConfig.RECOVERY_TIMEOUT,
            "max_defer_seconds": ResilienceConfig.MAX_DEFER_SECONDS,
            "base_request_delay": ResilienceConfig.BASE_REQUEST_DELAY,
            "poll_interval": SchedulerConfig.QUEUE_POLL_INTERVAL,
        }

    @classmethod
    def rapidapi_fpl_from_env(cls) -> "SourceConfig":
        """Create provider A configuration from environment variables."""
        return cls(
            name=RapidAPIConfig.NAME,
            base_url=RapidAPIConfig.BASE_URL,
            api_key=RapidAPIConfig.API_KEY,
            host=RapidAPIConfig.HOST,
            rate_limit_per_minute=RapidAPIConfig.RATE_LIMIT_PER_MINUTE,
            rate_limit_per_day=RapidAPIConfig.RATE_LIMIT_PER_DAY,
            timeout=RapidAPIConfig.TIMEOUT,
            **cls._resilience_defaults(),
        )

    @classmethod
    def api_football_from_env(cls) -> "SourceConfig":
        """Create provider B configuration from environment variables."""
        return cls(
            name=APIFootballConfig.NAME,
            base_url=APIFootballConfig.BASE_URL,
            api_key=APIFootballConfig.API_KEY,
            host=APIFootballConfig.HOST,
            rate_limit_per_minute=APIFootballConfig.RATE_LIMIT_PER_MINUTE,
            rate_limit_per_day=APIFootballConfig.RATE_LIMIT_PER_DAY,
            timeout=APIFootballConfig.TIMEOUT,
            **cls._resilience_defaults(),
        )


class AppConfig:
    """Main application configuration aggregating all config classes."""

    rapidapi = RapidAPIConfig
    api_football = APIFootballConfig
    resilience = ResilienceConfig
    cache = CacheConfig
    scheduler = SchedulerConfig
    logging = LoggingConfig

    # Application metadata
    APP_NAME: str = "FPL Data Gateway"
    VERSION: str = "1.0.0"

    @classmethod
    def initialize(cls) -> None:
        """Initialize all configuration settings and create necessary directories."""
        CacheConfig.ensure_directories()
        LoggingConfig.ensure_log_directory()

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate configuration settings.

        Returns:
            Tuple of (is_valid, error_messages)
        """
        errors = []

        if not RapidAPIConfig.is_configured():
            errors.append("RAPIDAPI_KEY is not configured")

        for provider in (RapidAPIConfig, APIFootballConfig):
            if provider.RATE_LIMIT_PER_MINUTE <= 0:
                errors.append(f"{provider.NAME} rate limit per minute must be greater than 0")
            if provider.RATE_LIMIT_PER_DAY < provider.RATE_LIMIT_PER_MINUTE:
                errors.append(f"{provider.NAME} daily quota is smaller than the minute limit")
            if provider.TIMEOUT <= 0:
                errors.append(f"{provider.NAME} timeout must be greater than 0")

        if ResilienceConfig.FAILURE_THRESHOLD < 1:
            errors.append("CIRCUIT_BREAKER_THRESHOLD must be at least 1")

        if ResilienceConfig.MAX_RETRIES < 0:
            errors.append("MAX_RETRIES cannot be negative")

        if CacheConfig.MEMORY_MAX_ENTRIES < 1 or CacheConfig.PERSISTENT_MAX_ENTRIES < 1:
            errors.append("Cache entry bounds must be at least 1")

        if SchedulerConfig.CACHE_SWEEP_INTERVAL < 60:
            errors.append("CACHE_SWEEP_INTERVAL should be at least 60 seconds")

        return (len(errors) == 0, errors)

    @classmethod
    def get_source_configs(cls, api_football_key: Optional[str] = None) -> list[SourceConfig]:
        """Build per-source settings for both providers."""
        secondary = SourceConfig.api_football_from_env()
        if api_football_key is not None:
            secondary.api_key = api_football_key
        return [SourceConfig.rapidapi_fpl_from_env(), secondary]


# Initialize configuration on module import
AppConfig.initialize()
