"""
Tests for configuration management.
"""

from unittest.mock import patch

from fpl_gateway.config import (
    APIFootballConfig,
    AppConfig,
    RapidAPIConfig,
    ResilienceConfig,
    SourceConfig,
)


class TestSourceConfig:
    """Test per-source settings."""

    def test_is_configured(self):
        assert SourceConfig("rapidapi_fpl", "https://example.test", api_key="key").is_configured
        assert not SourceConfig("rapidapi_fpl", "https://example.test").is_configured

    def test_defaults(self):
        config = SourceConfig("rapidapi_fpl", "https://example.test")

        assert config.rate_limit_per_minute == 5
        assert config.rate_limit_per_day == 15
        assert config.max_retries == 3
        assert config.failure_threshold == 5

    def test_rapidapi_from_env(self):
        with patch.object(RapidAPIConfig, "API_KEY", "fpl-key"):
            config = SourceConfig.rapidapi_fpl_from_env()

        assert config.name == "rapidapi_fpl"
        assert config.api_key == "fpl-key"
        assert config.host == RapidAPIConfig.HOST
        assert config.rate_limit_per_day == RapidAPIConfig.RATE_LIMIT_PER_DAY
        assert config.recovery_timeout == ResilienceConfig.RECOVERY_TIMEOUT

    def test_api_football_from_env(self):
        config = SourceConfig.api_football_from_env()

        assert config.name == "api_football"
        assert config.base_url == APIFootballConfig.BASE_URL
        assert config.rate_limit_per_minute == APIFootballConfig.RATE_LIMIT_PER_MINUTE


class TestAppConfig:
    """Test application configuration."""

    def test_source_configs_order(self):
        configs = AppConfig.get_source_configs()

        assert [c.name for c in configs] == ["rapidapi_fpl", "api_football"]

    def test_api_football_key_override(self):
        configs = AppConfig.get_source_configs(api_football_key="override")

        assert configs[1].api_key == "override"
        assert configs[1].is_configured

    def test_validate_success(self):
        with patch.object(RapidAPIConfig, "API_KEY", "fpl-key"):
            is_valid, errors = AppConfig.validate()

        assert is_valid is True
        assert errors == []

    def test_validate_missing_key(self):
        with patch.object(RapidAPIConfig, "API_KEY", ""):
            is_valid, errors = AppConfig.validate()

        assert is_valid is False
        assert "RAPIDAPI_KEY is not configured" in errors

    def test_validate_quota_consistency(self):
        with patch.object(RapidAPIConfig, "API_KEY", "fpl-key"), \
             patch.object(APIFootballConfig, "RATE_LIMIT_PER_DAY", 10):
            is_valid, errors = AppConfig.validate()

        assert is_valid is False
        assert "api_football daily quota is smaller than the minute limit" in errors

    def test_validate_failure_threshold(self):
        with patch.object(RapidAPIConfig, "API_KEY", "fpl-key"), \
             patch.object(ResilienceConfig, "FAILURE_THRESHOLD", 0):
            is_valid, errors = AppConfig.validate()

        assert not is_valid
        assert "CIRCUIT_BREAKER_THRESHOLD must be at least 1" in errors
