"""Centralized settings for the staff notification service.

Uses pydantic-settings to load from environment variables (prefixed NOTIFY_)
with defaults matching a single-node development deployment.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Notification service settings loaded from environment variables."""

    # --- Credential validation (tokens are issued elsewhere) ---
    jwt_secret: str = "super-secret"
    jwt_algorithm: str = "HS256"

    # --- WebSocket endpoint ---
    ws_path: str = "/ws/notifications"
    heartbeat_interval_seconds: float = 30.0
    max_connections_per_user: int = 5
    max_message_bytes: int = 64 * 1024
    rate_limit_per_minute: int = 60

    # --- Internal publish API (business layer -> hub) ---
    internal_api_key: str = ""  # empty disables the X-Internal-Key check

    # --- Server ---
    host: str = "0.0.0.0"
    port: int = 3002
    cors_origins: list[str] = ["http://localhost:3000"]

    # --- Logging ---
    log_level: str = "INFO"
    log_format: str = "json"

    model_config = {
        "env_prefix": "NOTIFY_",
        "env_file": ".env",
        "extra": "ignore",
    }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton."""
    return Settings()
