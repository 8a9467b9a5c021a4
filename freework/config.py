"""Client configuration using Pydantic settings."""

from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Client settings loaded from environment variables (prefix ``FREEWORK_``)."""

    # Auth API
    api_base_url: str = "http://localhost:8080/api/auth"
    use_mock_backend: bool = True
    http_timeout_seconds: float = 10.0

    # Token refresh
    refresh_lead_seconds: int = 60  # Refresh this long before expiry
    refresh_retry_seconds: int = 30  # Retry delay after a transient timer-driven failure

    # Realtime channel
    ws_url: str = "ws://localhost:8080/ws"
    reconnect_interval_seconds: float = 3.0
    max_reconnect_attempts: int = 5
    ws_heartbeat_seconds: float = 20.0

    # Durable token storage
    redis_url: Optional[str] = None  # None keeps tokens in process memory
    storage_key_prefix: str = "freework"

    # Logging
    log_level: str = "INFO"
    log_json: bool = True  # False renders human-readable console lines

    # Mock backend
    mock_jwt_secret: str = "freework-mock-secret-change-me"
    mock_access_token_ttl_seconds: int = 3600
    mock_refresh_token_ttl_seconds: int = 604800  # 7 days

    model_config = SettingsConfigDict(
        env_prefix="FREEWORK_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
