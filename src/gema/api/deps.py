"""Shared route dependencies.

Learn: The registries and the optional Redis relay live on app.state,
created by create_app(). Routes reach them through these dependencies,
so tests get a fresh set per app instance and nothing is a hidden
module-level singleton.
"""

from typing import Optional

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from gema.db.engine import get_db
from gema.realtime.pubsub import RealtimeRelay
from gema.realtime.registry import SubscriptionRegistry
from gema.services.chat_service import ChatService
from gema.services.discussion_service import DiscussionService
from gema.services.notification_service import NotificationService


def get_notification_registry(conn: HTTPConnection) -> SubscriptionRegistry:
    return conn.app.state.notifications


def get_chat_registry(conn: HTTPConnection) -> SubscriptionRegistry:
    return conn.app.state.chat


def get_relay(conn: HTTPConnection) -> Optional[RealtimeRelay]:
    return getattr(conn.app.state, "relay", None)


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    registry: SubscriptionRegistry = Depends(get_notification_registry),
    relay: Optional[RealtimeRelay] = Depends(get_relay),
) -> NotificationService:
    return NotificationService(db, registry, relay)


def get_chat_service(
    db: AsyncSession = Depends(get_db),
    registry: SubscriptionRegistry = Depends(get_chat_registry),
    relay: Optional[RealtimeRelay] = Depends(get_relay),
) -> ChatService:
    return ChatService(db, registry, relay)


def get_discussion_service(
    db: AsyncSession = Depends(get_db),
    notifications: NotificationService = Depends(get_notification_service),
) -> DiscussionService:
    return DiscussionService(db, notifications)
