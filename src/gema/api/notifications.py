"""Notification routes — list, live stream, mark read, publish.

Learn: GET /stream is the only long-lived endpoint. It doesn't take a
database session: holding one open for the lifetime of a browser tab
would pin a pool connection per viewer. The stream only needs the
in-memory registry.
"""

from fastapi import APIRouter, Depends, Query, Request

from gema.api.deps import get_notification_registry, get_notification_service
from gema.auth.dependencies import Identity, get_current_identity, require_role
from gema.config import settings
from gema.middleware.correlation import get_correlation_id
from gema.realtime.registry import SubscriptionRegistry
from gema.realtime.sse import NotificationStreamSession, keepalive_interval
from gema.schemas.common import ok
from gema.schemas.notification import NotificationCreate
from gema.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications")


@router.get("")
async def list_notifications(
    limit: int = Query(50),
    offset: int = Query(0),
    identity: Identity = Depends(get_current_identity),
    svc: NotificationService = Depends(get_notification_service),
):
    """The caller's notifications, newest first."""
    items = await svc.list_for_user(identity.user_id, limit=limit, offset=offset)
    return ok("notifications retrieved", [n.model_dump(mode="json") for n in items])


@router.get("/stream")
async def stream_notifications(
    request: Request,
    identity: Identity = Depends(get_current_identity),
    registry: SubscriptionRegistry = Depends(get_notification_registry),
):
    """Server-sent events: `notification` events plus keep-alive comments."""
    session = NotificationStreamSession(
        registry,
        identity.user_id,
        interval=keepalive_interval(
            settings.sse_client_timeout_seconds, settings.sse_min_keepalive_seconds
        ),
        correlation_id=get_correlation_id(request),
    )
    return session.response()


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: int,
    identity: Identity = Depends(get_current_identity),
    svc: NotificationService = Depends(get_notification_service),
):
    notification = await svc.mark_read(notification_id, identity.user_id)
    return ok("notification marked as read", notification.model_dump(mode="json"))


@router.post("", status_code=201)
async def publish_notification(
    body: NotificationCreate,
    _: Identity = Depends(require_role("admin")),
    svc: NotificationService = Depends(get_notification_service),
):
    """Create a notification for any user (admin/teacher only)."""
    notification = await svc.publish(body)
    return ok("notification published", notification.model_dump(mode="json"))
