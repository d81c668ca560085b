"""
Model Cache Configuration

Configuration management with environment variable support.
Implements secure defaults and validation for all settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from typing import Dict
from functools import lru_cache
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation and secure defaults."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=True, extra="ignore"
    )

    # Environment settings
    ENVIRONMENT: str = Field(
        default="development", description="Application environment"
    )

    # Database configuration
    DATABASE_URL: str = Field(
        default="sqlite:///:memory:",
        description="SQLAlchemy database URL for the relational entity store",
    )
    DATABASE_POOL_SIZE: int = Field(
        default=20, ge=1, le=100, description="Database connection pool size"
    )
    DATABASE_MAX_OVERFLOW: int = Field(
        default=30, ge=0, le=100, description="Maximum overflow connections"
    )
    DATABASE_CONNECT_RETRIES: int = Field(
        default=3, ge=1, le=10, description="Connection check attempts on startup"
    )

    # Redis configuration
    REDIS_URL: str = Field(
        default="redis://localhost:6379/0", description="Default Redis connection URL"
    )
    REDIS_CONNECTIONS: Dict[str, str] = Field(
        default_factory=dict,
        description="Named cache connections (identifier -> Redis URL)",
    )
    REDIS_MAX_CONNECTIONS: int = Field(
        default=10, ge=1, le=50, description="Redis connection pool size"
    )
    REDIS_CONNECTION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis socket connect timeout"
    )
    REDIS_OPERATION_TIMEOUT: float = Field(
        default=5.0, gt=0, le=60, description="Redis socket operation timeout"
    )
    REDIS_HEALTH_CHECK_INTERVAL: int = Field(
        default=30, ge=0, le=300, description="Redis connection health check interval"
    )

    # Stampede lock configuration
    CACHE_LOCK_MAX_WAIT_SECONDS: float = Field(
        default=5.0, ge=0, le=60, description="Maximum wait for a held fill lock"
    )
    CACHE_LOCK_POLL_INTERVAL_MS: int = Field(
        default=200, ge=1, le=5000, description="Poll interval while waiting"
    )
    CACHE_LOCK_STRICT: bool = Field(
        default=False,
        description="Use atomic set-if-absent locking instead of poll-then-write",
    )
    CACHE_LOCK_LEASE_SECONDS: int = Field(
        default=30, ge=1, le=600, description="Lease on a strict fill lock"
    )

    # Development and debugging
    DEBUG: bool = Field(default=False, description="Enable debug mode")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log renderer (json or console)")

    @field_validator("DATABASE_URL")
    @classmethod
    def validate_database_url(cls, v):
        """Validate database URL format."""
        if "://" not in v:
            raise ValueError("DATABASE_URL must be a SQLAlchemy connection URL")
        return v

    @field_validator("REDIS_URL")
    @classmethod
    def validate_redis_url(cls, v):
        """Validate Redis URL scheme."""
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("REDIS_URL must be a redis://, rediss:// or unix:// URL")
        return v

    @field_validator("ENVIRONMENT")
    @classmethod
    def validate_environment(cls, v):
        """Validate environment value."""
        allowed = ["development", "test", "staging", "production"]
        if v not in allowed:
            raise ValueError(f"ENVIRONMENT must be one of: {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v):
        """Validate log level."""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of: {allowed}")
        return v.upper()

    @field_validator("LOG_FORMAT")
    @classmethod
    def validate_log_format(cls, v):
        """Validate log renderer."""
        if v not in ("json", "console"):
            raise ValueError("LOG_FORMAT must be 'json' or 'console'")
        return v

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.ENVIRONMENT == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.ENVIRONMENT == "production"

    def redis_url_for(self, connection: str) -> str:
        """Get the Redis URL registered for a cache connection identifier.

        The identifier ``default`` falls back to ``REDIS_URL``.
        """
        if connection in self.REDIS_CONNECTIONS:
            return self.REDIS_CONNECTIONS[connection]
        if connection == "default":
            return self.REDIS_URL
        raise KeyError(connection)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Create global settings instance
settings = get_settings()
