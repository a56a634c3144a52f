"""FastAPI Application Factory.

Creates the notification service: the WebSocket session endpoint, the
internal publish API and a health check. Each application owns one
:class:`~src.realtime.NotificationHub`, stored on ``app.state.hub``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.config import APIConfig, DEFAULT_API_CONFIG
from src.api.models import HealthResponse
from src.api.routes import notifications
from src.api.routes.ws import notifications_websocket
from src.logging_config import LoggingConfig, configure_logging
from src.realtime import NotificationHub
from src.settings import Settings, get_settings

logger = logging.getLogger(__name__)


# ── Lifespan (startup / shutdown) ────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging, run the heartbeat, close every session on exit."""
    # ── Startup ──
    configure_logging(LoggingConfig.from_settings(app.state.settings))
    hub: NotificationHub = app.state.hub
    hub.start()
    logger.info("Notification service starting up")
    yield
    # ── Shutdown ──
    await hub.shutdown()
    logger.info("Notification service shutting down")


# ── App Factory ──────────────────────────────────────────────────────


def create_app(
    settings: Optional[Settings] = None,
    hub: Optional[NotificationHub] = None,
    config: Optional[APIConfig] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Service settings. Loaded from the environment if not provided.
        hub: Notification hub. Built from ``settings`` if not provided.
        config: Static API metadata. Uses defaults if not provided.

    Returns:
        Configured FastAPI application.
    """
    settings = settings or get_settings()
    hub = hub or NotificationHub.from_settings(settings)
    config = config or DEFAULT_API_CONFIG

    app = FastAPI(
        title=config.title,
        version=config.version,
        description=config.description,
        docs_url=config.docs_url,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=config.cors_methods,
        allow_headers=config.cors_headers,
    )

    # ── Health check ─────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(
            status="ok",
            version=config.version,
            connections=hub.registry.get_connection_count(),
        )

    # ── Routes ───────────────────────────────────────────────────

    app.include_router(notifications.router, prefix=config.prefix)
    app.add_api_websocket_route(settings.ws_path, notifications_websocket)

    logger.info("Notification API v%s initialized", config.version)
    return app
