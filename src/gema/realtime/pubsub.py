"""Redis pub/sub — fan-out between API processes.

Learn: Each process only knows its own connections (the registries are
in-memory). When the API runs on several nodes, a notification published
on node A must still reach a browser streaming from node B. The relay
forwards every locally published event to a Redis channel, and a
background consumer on every node re-publishes events from *other* nodes
into its local registries.

Redis pub/sub is fire-and-forget. If no one is listening, the message
is lost. That's fine here — the database row is the durable copy.

Channel naming: {base}:notifications and {base}:chat
Envelope: {"source": node_id, "kind": ..., "payload": {...}, "sent_at": iso}

Redis is optional: with no GEMA_REDIS_URL the relay is never created and
everything stays in-process.
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from gema.realtime.registry import SubscriptionRegistry
from gema.schemas.chat import ChatMessageRead
from gema.schemas.notification import NotificationRead

logger = structlog.get_logger()

KIND_NOTIFICATION = "notification"
KIND_CHAT = "chat"

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


async def init_redis(url: str) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = aioredis.from_url(url, encoding="utf-8", decode_responses=True)
    # Verify connection
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> Optional[aioredis.Redis]:
    """Get the Redis connection, or None when Redis isn't in use."""
    return _redis


class RealtimeRelay:
    """Bridges the local registries to Redis pub/sub."""

    def __init__(
        self,
        redis: aioredis.Redis,
        channel_base: str,
        notifications: SubscriptionRegistry,
        chat: SubscriptionRegistry,
        node_id: Optional[str] = None,
    ):
        self.redis = redis
        self.node_id = node_id or uuid.uuid4().hex
        self.notifications = notifications
        self.chat = chat
        self.channels = {
            KIND_NOTIFICATION: f"{channel_base}:notifications",
            KIND_CHAT: f"{channel_base}:chat",
        }

    def envelope(self, kind: str, payload: dict[str, Any]) -> str:
        return json.dumps({
            "source": self.node_id,
            "kind": kind,
            "payload": payload,
            "sent_at": datetime.now(timezone.utc).isoformat(),
        }, default=str)

    async def publish(self, kind: str, payload: dict[str, Any]) -> None:
        """Forward a locally published event to the other nodes."""
        await self.redis.publish(self.channels[kind], self.envelope(kind, payload))

    async def publish_notification(self, notification: NotificationRead) -> None:
        await self.publish(KIND_NOTIFICATION, notification.model_dump(mode="json"))

    async def publish_chat(self, message: ChatMessageRead) -> None:
        await self.publish(KIND_CHAT, message.model_dump(mode="json"))

    def handle_message(self, raw: str) -> bool:
        """Re-publish a remote event locally. Returns True if it was delivered."""
        try:
            event = json.loads(raw)
            source = event["source"]
            kind = event["kind"]
            payload = event["payload"]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("relay.invalid_event", error=str(e))
            return False

        if source == self.node_id:
            return False

        try:
            if kind == KIND_NOTIFICATION:
                notification = NotificationRead.model_validate(payload)
                self.notifications.publish(notification.user_id, notification)
            elif kind == KIND_CHAT:
                message = ChatMessageRead.model_validate(payload)
                self.chat.publish(message.room_id, message)
            else:
                logger.warning("relay.unknown_kind", kind=kind)
                return False
        except ValidationError as e:
            logger.warning("relay.invalid_payload", kind=kind, error=str(e))
            return False
        return True

    async def run(self) -> None:
        """Consume both channels until cancelled."""
        pubsub = self.redis.pubsub()
        await pubsub.subscribe(*self.channels.values())
        logger.info("relay.started", node_id=self.node_id, channels=list(self.channels.values()))
        try:
            async for message in pubsub.listen():
                if message.get("type") == "message":
                    self.handle_message(message["data"])
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("relay.consumer_failed")
        finally:
            await pubsub.unsubscribe()
            await pubsub.aclose()
            logger.info("relay.stopped", node_id=self.node_id)
