"""FastAPI Dependencies for the hub and the internal API key.

The hub lives on ``app.state`` so each application (and each test) owns its
own instance. The publish endpoints are opt-in guarded: when
``internal_api_key`` is empty every caller is accepted.
"""

import hmac
import logging
from typing import Optional

from fastapi import Header, HTTPException, Request

from src.realtime import NotificationHub
from src.settings import Settings

logger = logging.getLogger(__name__)


def get_hub(request: Request) -> NotificationHub:
    """Return the hub owned by the running application."""
    return request.app.state.hub


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


async def require_internal_key(
    request: Request,
    x_internal_key: Optional[str] = Header(default=None),
) -> None:
    """Reject publish calls that do not carry the shared internal key.

    Usage::

        @router.post("/publish", dependencies=[Depends(require_internal_key)])
        async def publish(...):
            ...
    """
    expected = get_app_settings(request).internal_api_key
    if not expected:
        return

    if not x_internal_key:
        raise HTTPException(
            status_code=401,
            detail="Missing internal key, provide X-Internal-Key header",
        )
    if not hmac.compare_digest(x_internal_key.encode(), expected.encode()):
        logger.warning("Rejected publish call with invalid internal key")
        raise HTTPException(status_code=403, detail="Invalid internal key")
