"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = "sqlite:///./data/grocery.db"

    # Security
    secret_key: str = DEFAULT_SECRET_KEY
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60 * 24 * 7

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:5173,http://localhost:4000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_prefix: str = "/api"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Fulfillment
    # ==========================================================================
    # Upper bound on how long a request waits for a stock/order row lock.
    lock_timeout_ms: int = 3000
    default_warehouse_code: str = "MAIN"
    default_max_active_orders: int = 5
    # When true a finished pick task removes the full requested quantity from
    # stock regardless of what was reported as picked.
    pick_commit_requested_qty: bool = True
    order_list_limit: int = 200

    # Seed a demo warehouse, catalog and staff accounts on startup
    seed_demo_data: bool = False

    @field_validator("lock_timeout_ms", "default_max_active_orders", "order_list_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Refuse to run in production mode with the default secret key."""
        if not self.debug and self.secret_key == DEFAULT_SECRET_KEY:
            raise ValueError(
                "FATAL: Cannot start in production mode with default SECRET_KEY. "
                "Set a secure SECRET_KEY environment variable."
            )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
