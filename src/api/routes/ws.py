"""Notification WebSocket endpoint.

The path comes from settings (``/ws/notifications`` by default), so
:func:`src.api.app.create_app` registers :func:`notifications_websocket`
with ``add_api_websocket_route`` instead of a decorator.
"""

import logging

from fastapi import WebSocket

logger = logging.getLogger(__name__)


async def notifications_websocket(websocket: WebSocket) -> None:
    """Authenticate the upgrade, then run the session until either side closes.

    The credential is the ``token`` query parameter or an
    ``Authorization: Bearer`` header. A rejected credential is answered
    with close code 1008.
    """
    hub = websocket.app.state.hub
    await hub.serve(websocket)
