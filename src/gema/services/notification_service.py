"""Notification service — persist, then push to whoever is listening.

Learn: publish() is a write followed by a best-effort fan-out:
1. Validate + sanitize, INSERT the row (durable source of truth)
2. Offer the serialized notification to every live SSE subscription
   for that recipient (never blocks; full channels drop)
3. Forward to the other API nodes via Redis, if configured

Callers treat the returned NotificationRead as the result; whether any
browser actually received the push is not observable here.
"""

from typing import Callable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gema.db.models import Notification
from gema.realtime.pubsub import RealtimeRelay
from gema.realtime.registry import Subscription, SubscriptionRegistry
from gema.schemas.notification import NotificationCreate, NotificationRead
from gema.services.errors import InvalidInputError, NotFoundError
from gema.services.text import clean_text

logger = structlog.get_logger()

DEFAULT_LIST_LIMIT = 50
MAX_LIST_LIMIT = 100


class NotificationNotFoundError(NotFoundError):
    """Raised when a notification doesn't exist for this user."""


class NotificationService:
    """Create, list, and mark notifications; stream them live."""

    def __init__(
        self,
        db: AsyncSession,
        registry: SubscriptionRegistry[NotificationRead],
        relay: Optional[RealtimeRelay] = None,
    ):
        self.db = db
        self.registry = registry
        self.relay = relay

    # ─── Publish ──────────────────────────────────────────

    async def publish(self, payload: NotificationCreate) -> NotificationRead:
        """Persist a notification and fan it out to live subscribers."""
        message = clean_text(payload.message)
        if not message:
            raise InvalidInputError("notification message empty after sanitization")

        notification = Notification(
            user_id=payload.user_id.strip(),
            type=payload.type.strip(),
            message=message,
            read=False,
        )
        self.db.add(notification)
        await self.db.commit()
        await self.db.refresh(notification)

        result = NotificationRead.model_validate(notification)
        delivered = self.registry.publish(result.user_id, result)
        logger.info(
            "notifications.published",
            notification_id=result.id,
            user_id=result.user_id,
            type=result.type,
            delivered=delivered,
        )

        if self.relay is not None:
            try:
                await self.relay.publish_notification(result)
            except Exception as e:
                logger.warning("notifications.relay_failed", error=str(e))

        return result

    # ─── Read side ────────────────────────────────────────

    async def list_for_user(
        self, user_id: str, limit: int = DEFAULT_LIST_LIMIT, offset: int = 0
    ) -> list[NotificationRead]:
        """Newest first. Out-of-range limits fall back to the default."""
        if not user_id.strip():
            raise InvalidInputError("user id is required")
        if limit <= 0 or limit > MAX_LIST_LIMIT:
            limit = DEFAULT_LIST_LIMIT
        offset = max(offset, 0)

        result = await self.db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return [NotificationRead.model_validate(n) for n in result.scalars().all()]

    async def mark_read(self, notification_id: int, user_id: str) -> NotificationRead:
        """Mark as read. Idempotent: an already-read row is returned unchanged."""
        result = await self.db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user_id,
            )
        )
        notification = result.scalars().first()
        if notification is None:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.read:
            notification.read = True
            await self.db.commit()
            await self.db.refresh(notification)

        return NotificationRead.model_validate(notification)

    # ─── Live stream ──────────────────────────────────────

    def subscribe(self, user_id: str) -> tuple[Subscription[NotificationRead], Callable[[], None]]:
        """Open a live channel for `user_id` (see SubscriptionRegistry.subscribe)."""
        return self.registry.subscribe(user_id)
