from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings."""

    # Application
    ENVIRONMENT: Literal["local", "development", "production"] = "local"
    LOG_LEVEL: str = "INFO"
    SERVICE_NAME: str = "storefront"

    # Commerce backend (carts, delivery, checkout, orders, inventory)
    BACKEND_URL: str = "http://localhost:8080"
    BACKEND_TIMEOUT_SECONDS: float = 10.0

    # Public storefront, used to build order page / payment return URLs
    STOREFRONT_URL: str = "http://localhost:3000"

    # Durable key-value store. In-memory store is used when unset.
    REDIS_URL: Optional[str] = None
    KV_KEY_PREFIX: str = "storefront"

    # In-process browsing sessions: idle ones are evicted, oldest first past the cap
    SESSION_IDLE_TTL_SECONDS: float = 1800.0
    SESSION_MAX_COUNT: int = 10000

    # Auth collaborator
    AUTH_JWT_SECRET: str = "test-jwt-secret"
    AUTH_JWT_ALGORITHM: str = "HS256"
    MANAGER_ROLE: str = "manager"

    # Delivery quoting
    DEFAULT_PICKUP_LOCATION: str = "Москва"

    # Payment status polling
    PAYMENT_POLL_INITIAL_DELAY_SECONDS: float = 6.0
    PAYMENT_POLL_INTERVAL_SECONDS: float = 10.0
    PAYMENT_POLL_MAX_ATTEMPTS: int = 18

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("BACKEND_URL", "STOREFRONT_URL")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator("PAYMENT_POLL_MAX_ATTEMPTS")
    @classmethod
    def positive_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("PAYMENT_POLL_MAX_ATTEMPTS must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    """
    Return the global settings instance, cached.
    """
    return Settings()
