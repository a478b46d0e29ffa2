from functools import lru_cache
from typing import Literal, Optional
import logging
import math

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Explicitly load .env file to ensure environment variables are available
load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Environment detection
    APP_ENV: Literal["production", "development"] = Field(
        default="development",
        description="Application environment: production or development"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level"
    )
    LOG_FORMAT: Literal["json", "development", "auto"] = Field(
        default="auto",
        description="json for structured logs, development for human-readable, auto to pick by APP_ENV"
    )

    # Spatial index tuning
    GRID_CELL_SIZE_M: float = Field(
        default=10_000.0,
        description="Grid cell edge length in metres (half the canonical 20km search radius)"
    )
    DEFAULT_SEARCH_RADIUS_M: float = Field(
        default=20_000.0,
        description="Radius used when a search request does not specify one"
    )
    MAX_SEARCH_LIMIT: int = Field(
        default=500,
        description="Upper bound accepted for the search limit parameter"
    )
    MAX_WORKER_THREADS: int = Field(default=4, description="Worker threads for CPU-bound searches")

    # Backing store
    BACKING_STORE: Literal["memory", "redis", "none"] = Field(
        default="memory",
        description="Durable write-through target: memory (dev only), redis, or none"
    )
    REDIS_URL: Optional[str] = Field(default=None, description="Redis connection URL for the redis backing store")
    GEO_REDIS_KEY: str = Field(default="geoproximity:records", description="Redis hash holding persisted records")

    # Server settings
    HOST: str = Field(default="0.0.0.0", description="Server host")
    PORT: int = Field(default=8001, description="Port for the Uvicorn server")

    # Authentication settings
    JWT_SECRET: Optional[str] = None
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm for token verification")
    JWT_AUDIENCE: str = Field(default="authenticated", description="JWT audience for token verification")
    REQUIRE_AUTH: bool = Field(default=False, description="Whether to require authentication for mutating endpoints")

    # CORS
    CORS_ORIGINS: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        extra="ignore"
    )

    @field_validator('REQUIRE_AUTH', mode='before')
    @classmethod
    def parse_boolean(cls, v):
        """Handle string boolean values from environment variables."""
        if isinstance(v, bool):
            return v
        if isinstance(v, str):
            return v.lower() in ('true', '1', 'yes', 'on', 't', 'y')
        return bool(v)

    @property
    def use_json_logs(self) -> bool:
        if self.LOG_FORMAT == "auto":
            return self.APP_ENV == "production"
        return self.LOG_FORMAT == "json"


def validate_environment_configuration(settings: Settings) -> None:
    """
    Validate configuration for the current environment mode.

    Critical errors prevent startup, warnings are logged but allow continuation.

    Raises:
        ConfigurationError: For critical configuration errors that prevent startup
    """
    from .exceptions import ConfigurationError

    critical_errors = []
    warnings = []

    if not math.isfinite(settings.GRID_CELL_SIZE_M) or settings.GRID_CELL_SIZE_M <= 0:
        critical_errors.append(("GRID_CELL_SIZE_M", "must be a positive number of metres"))
    elif settings.GRID_CELL_SIZE_M > settings.DEFAULT_SEARCH_RADIUS_M:
        warnings.append(
            f"GRID_CELL_SIZE_M ({settings.GRID_CELL_SIZE_M:.0f}) exceeds DEFAULT_SEARCH_RADIUS_M "
            f"({settings.DEFAULT_SEARCH_RADIUS_M:.0f}); searches will scan more false positives"
        )

    if not math.isfinite(settings.DEFAULT_SEARCH_RADIUS_M) or settings.DEFAULT_SEARCH_RADIUS_M <= 0:
        critical_errors.append(("DEFAULT_SEARCH_RADIUS_M", "must be a positive number of metres"))

    if settings.MAX_SEARCH_LIMIT <= 0:
        critical_errors.append(("MAX_SEARCH_LIMIT", "must be positive"))

    if settings.MAX_WORKER_THREADS <= 0:
        critical_errors.append(("MAX_WORKER_THREADS", "must be positive"))

    if settings.REQUIRE_AUTH and not settings.JWT_SECRET:
        critical_errors.append(
            ("JWT_SECRET", "REQUIRE_AUTH=true but JWT_SECRET not provided")
        )

    if settings.BACKING_STORE == "redis" and not settings.REDIS_URL:
        warnings.append("BACKING_STORE=redis without REDIS_URL - falling back to redis://localhost:6379")

    if settings.APP_ENV == "production" and settings.BACKING_STORE != "redis":
        warnings.append(
            f"Production environment with BACKING_STORE={settings.BACKING_STORE} - records will not survive restarts"
        )

    cors_origins = settings.CORS_ORIGINS.strip() if settings.CORS_ORIGINS else ""
    if cors_origins and cors_origins != "*":
        for origin in cors_origins.split(','):
            origin = origin.strip()
            if origin and not (origin.startswith('http://') or origin.startswith('https://')):
                warnings.append(f"CORS origin should include protocol: {origin}")

    if critical_errors:
        field, reason = critical_errors[0]
        error_msg = "Critical configuration errors found:\n" + "\n".join(
            f"- {name}: {why}" for name, why in critical_errors
        )
        logger.error(error_msg)
        raise ConfigurationError(field, reason)

    for warning in warnings:
        logger.warning(warning)

    logger.info(
        "Configuration summary",
        extra={
            "app_env": settings.APP_ENV,
            "grid_cell_size_m": settings.GRID_CELL_SIZE_M,
            "default_radius_m": settings.DEFAULT_SEARCH_RADIUS_M,
            "backing_store": settings.BACKING_STORE,
            "auth_enabled": settings.REQUIRE_AUTH,
            "validation_status": "complete"
        }
    )


@lru_cache()
def get_settings() -> Settings:
    """Dependency for getting settings."""
    return Settings()
