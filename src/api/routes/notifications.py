"""Internal publish API: the business layer hands freshly persisted
notifications to the hub for best-effort live delivery."""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_hub, require_internal_key
from src.api.models import (
    CountRequest,
    DeliveryResponse,
    PublishRequest,
    RealtimeStatsResponse,
)
from src.realtime import DeliveryScope, NotificationHub, OutboundNotification

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


@router.post(
    "/notifications/publish",
    response_model=DeliveryResponse,
    dependencies=[Depends(require_internal_key)],
)
async def publish_notification(
    body: PublishRequest,
    hub: NotificationHub = Depends(get_hub),
):
    """Push one notification to a user or a (role, scope key) group."""
    if body.user_id is not None:
        scope = DeliveryScope.for_user(body.user_id)
    else:
        scope = DeliveryScope.for_group(body.role, body.scope_key)

    extra = {}
    if body.notification_id:
        extra["notification_id"] = body.notification_id

    notification = OutboundNotification(
        scope=scope,
        type=body.type,
        category=body.category,
        title=body.title,
        body=body.message,
        priority=body.priority,
        data=body.data,
        scope_name=body.scope_name,
        **extra,
    )
    delivered = await hub.publish(notification)
    logger.info("Published %s to %d socket(s)", notification.notification_id, delivered)
    return DeliveryResponse(delivered=delivered)


@router.post(
    "/notifications/count",
    response_model=DeliveryResponse,
    dependencies=[Depends(require_internal_key)],
)
async def push_notification_count(
    body: CountRequest,
    hub: NotificationHub = Depends(get_hub),
):
    delivered = await hub.broadcast_count(body.user_id, body.total, body.unread)
    return DeliveryResponse(delivered=delivered)


@router.get("/realtime/stats", response_model=RealtimeStatsResponse)
async def realtime_stats(hub: NotificationHub = Depends(get_hub)):
    return RealtimeStatsResponse(**hub.get_stats())
