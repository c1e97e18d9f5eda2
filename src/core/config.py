"""Application configuration management using Pydantic Settings."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="storefront-backend", description="Application name")
    app_env: str = Field(default="development", description="Environment (development/staging/production)")
    debug: bool = Field(default=False, description="Enable debug mode")

    # Server
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Comma-separated list of allowed CORS origins (storefront and admin dashboard)",
    )

    # MongoDB
    mongodb_url: str = Field(default="mongodb://localhost:27017", description="MongoDB connection string")
    mongodb_database: str = Field(default="storefront", description="MongoDB database name")
    mongodb_server_selection_timeout_ms: int = Field(
        default=5000,
        description="How long the driver waits for a usable server before failing an operation",
    )

    # Order snapshot notifier
    notifier_webhook_url: str = Field(
        default="",
        description="Endpoint receiving order snapshots (empty logs snapshots only)",
    )
    notifier_timeout_seconds: float = Field(default=10.0, description="HTTP timeout for a snapshot push")
    notifier_max_attempts: int = Field(default=3, ge=1, description="Push attempts before giving up")
    notifier_backoff_seconds: float = Field(
        default=0.5,
        ge=0,
        description="Base delay of the exponential backoff between push attempts",
    )
    currency: str = Field(default="QAR", description="Currency label included in order snapshots")

    # Derived order views
    reflection_max_attempts: int = Field(
        default=2,
        ge=1,
        description="Attempts per derived collection before a reflection failure is logged",
    )
    reflection_backoff_seconds: float = Field(
        default=0.1,
        ge=0,
        description="Base delay of the exponential backoff between reflection attempts",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins string into a list."""
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings: Application settings instance.

    Note:
        Settings are cached using lru_cache for performance.
        Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
