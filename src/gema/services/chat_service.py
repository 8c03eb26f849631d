"""Chat service — room messages: authorise, persist, fan out, page history.

Learn: The websocket layer (realtime/chat.py) owns the connection; this
service owns what a message *means*:
- who may post where (role-based, see authorise)
- sanitizing and storing the message
- fanning it out to every socket in the room via the chat registry
- relaying it to other API nodes when Redis is configured

History is read straight from the database, independently of any live
connection — that is the replay path for clients that reconnect.
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gema.db.models import ChatMessage
from gema.realtime.pubsub import RealtimeRelay
from gema.realtime.registry import SubscriptionRegistry
from gema.schemas.chat import ChatHistoryQuery, ChatMessageRead, ChatSendRequest
from gema.services.errors import InvalidInputError, PermissionDeniedError
from gema.services.text import clean_rich_text

logger = structlog.get_logger()


class ChatNotAuthorisedError(PermissionDeniedError):
    """Raised when the sender may not post into the target room."""


@dataclass(frozen=True)
class ChatConnectionOptions:
    """Everything a chat connection needs from the upgrade request."""

    user_id: str
    role: str
    room_id: str
    correlation_id: str = ""


class ChatService:
    """Send and page chat messages."""

    def __init__(
        self,
        db: AsyncSession,
        registry: SubscriptionRegistry,
        relay: Optional[RealtimeRelay] = None,
    ):
        self.db = db
        self.registry = registry
        self.relay = relay

    # ─── Send ─────────────────────────────────────────────

    async def send(
        self, options: ChatConnectionOptions, request: ChatSendRequest
    ) -> ChatMessageRead:
        """Store a message from `options.user_id` and broadcast it to its room."""
        room_id = request.room_id or options.room_id
        if len(room_id) < 3:
            raise InvalidInputError("room_id must be between 3 and 128 characters")
        receiver_id = request.receiver_id or None

        self.authorise(options, room_id, receiver_id)

        content = clean_rich_text(request.content)
        if not content:
            raise InvalidInputError("message content empty after sanitization")

        message = ChatMessage(
            room_id=room_id,
            sender_id=options.user_id,
            receiver_id=receiver_id,
            content=content,
            type=request.type,
        )
        self.db.add(message)
        await self.db.commit()
        await self.db.refresh(message)

        result = ChatMessageRead.model_validate(message)
        delivered = self.registry.publish(result.room_id, result)
        logger.debug(
            "chat.message_sent",
            message_id=result.id,
            room_id=result.room_id,
            sender_id=result.sender_id,
            delivered=delivered,
            correlation_id=options.correlation_id,
        )

        if self.relay is not None:
            try:
                await self.relay.publish_chat(result)
            except Exception as e:
                logger.warning("chat.relay_failed", error=str(e))

        return result

    @staticmethod
    def authorise(
        options: ChatConnectionOptions, room_id: str, receiver_id: Optional[str]
    ) -> None:
        """Role rules for posting.

        - admin / teacher: anywhere
        - student: rooms whose id contains their user id, or when they
          are the receiver
        - anyone else: only as the receiver, in their own connection room
        """
        role = options.role.strip().lower()
        if role in ("admin", "teacher"):
            return
        if role == "student":
            if options.user_id in room_id:
                return
            if receiver_id and receiver_id == options.user_id:
                return
            raise ChatNotAuthorisedError("sender not authorised for room")
        if receiver_id == options.user_id and room_id == options.room_id:
            return
        raise ChatNotAuthorisedError("sender not authorised for room")

    # ─── History ──────────────────────────────────────────

    async def history(self, query: ChatHistoryQuery) -> list[ChatMessageRead]:
        """The newest `limit` messages older than `before`, oldest first.

        Ordering is (created_at, id) so pages are stable even when two
        messages share a timestamp.
        """
        stmt = select(ChatMessage).where(ChatMessage.room_id == query.room_id)
        if query.before is not None:
            stmt = stmt.where(ChatMessage.created_at < query.before)
        stmt = stmt.order_by(
            ChatMessage.created_at.desc(), ChatMessage.id.desc()
        ).limit(query.limit)

        result = await self.db.execute(stmt)
        messages = list(result.scalars().all())
        messages.reverse()
        return [ChatMessageRead.model_validate(m) for m in messages]
