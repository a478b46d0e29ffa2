"""
Tests for Settings parsing and startup configuration validation.
"""
import pytest

from geoproximity.config import Settings, validate_environment_configuration
from geoproximity.exceptions import ConfigurationError


class TestSettings:

    def test_defaults(self, settings):
        assert settings.GRID_CELL_SIZE_M == 10_000.0
        assert settings.DEFAULT_SEARCH_RADIUS_M == 20_000.0
        assert settings.MAX_SEARCH_LIMIT == 500
        assert settings.BACKING_STORE == "memory"

    @pytest.mark.parametrize("raw, expected", [
        ("true", True), ("1", True), ("YES", True), ("false", False), ("0", False), ("", False),
    ])
    def test_require_auth_parsing(self, monkeypatch, raw, expected):
        monkeypatch.setenv("REQUIRE_AUTH", raw)
        assert Settings(_env_file=None).REQUIRE_AUTH is expected

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("GRID_CELL_SIZE_M", "5000")
        monkeypatch.setenv("BACKING_STORE", "redis")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/0")

        settings = Settings(_env_file=None)

        assert settings.GRID_CELL_SIZE_M == 5000.0
        assert settings.BACKING_STORE == "redis"
        assert settings.REDIS_URL == "redis://cache:6379/0"

    @pytest.mark.parametrize("log_format, app_env, expected", [
        ("auto", "production", True),
        ("auto", "development", False),
        ("json", "development", True),
        ("development", "production", False),
    ])
    def test_use_json_logs(self, settings, log_format, app_env, expected):
        configured = settings.model_copy(update={"LOG_FORMAT": log_format, "APP_ENV": app_env})
        assert configured.use_json_logs is expected


class TestValidation:

    def test_valid_configuration_passes(self, settings):
        validate_environment_configuration(settings)

    @pytest.mark.parametrize("field, value", [
        ("GRID_CELL_SIZE_M", 0.0),
        ("GRID_CELL_SIZE_M", -1.0),
        ("DEFAULT_SEARCH_RADIUS_M", 0.0),
        ("MAX_SEARCH_LIMIT", 0),
        ("MAX_WORKER_THREADS", 0),
    ])
    def test_critical_errors(self, settings, field, value):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_environment_configuration(settings.model_copy(update={field: value}))
        assert exc_info.value.config_field == field

    def test_auth_without_secret(self, settings):
        broken = settings.model_copy(update={"REQUIRE_AUTH": True, "JWT_SECRET": None})
        with pytest.raises(ConfigurationError) as exc_info:
            validate_environment_configuration(broken)
        assert exc_info.value.config_field == "JWT_SECRET"

    def test_warnings_do_not_block_startup(self, settings):
        noisy = settings.model_copy(update={
            "APP_ENV": "production",
            "BACKING_STORE": "memory",
            "GRID_CELL_SIZE_M": 50_000.0,
            "CORS_ORIGINS": "example.com",
        })
        validate_environment_configuration(noisy)
