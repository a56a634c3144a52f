"""HTTP and WebSocket surface for the notification hub.

Example:
    from src.api import create_app
    app = create_app()
"""

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.models import (
    CountRequest,
    DeliveryResponse,
    HealthResponse,
    PublishRequest,
    RealtimeStatsResponse,
)
from src.api.app import create_app

__all__ = [
    # Config
    "APIConfig",
    "DEFAULT_API_CONFIG",
    # Models
    "CountRequest",
    "DeliveryResponse",
    "HealthResponse",
    "PublishRequest",
    "RealtimeStatsResponse",
    # App
    "create_app",
]
