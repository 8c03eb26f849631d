"""Discussion service — forum threads and replies.

Learn: Threads are ordered by activity, not creation. Posting a reply
bumps the thread's updated_at, so busy threads float to the top of the
list. Replies also fan out `discussion_reply` notifications through
NotificationService to:
- the thread author
- everyone @mentioned in the reply body
never to the reply author themselves. Notification failures are logged
and swallowed; the reply is already committed by then.
"""

import re
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from gema.auth.dependencies import Identity
from gema.db.models import DiscussionReply, DiscussionThread, utcnow
from gema.schemas.discussion import ReplyCreate, ReplyRead, ThreadCreate, ThreadRead, ThreadUpdate
from gema.schemas.notification import NotificationCreate
from gema.services.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from gema.services.notification_service import NotificationService
from gema.services.text import clean_text

logger = structlog.get_logger()

MENTION_PATTERN = re.compile(r"@([A-Za-z0-9_\-:]+)")
REPLY_NOTIFICATION_TYPE = "discussion_reply"

DEFAULT_THREAD_LIMIT = 20
DEFAULT_REPLY_LIMIT = 50
MAX_LIMIT = 100


class ThreadNotFoundError(NotFoundError):
    """Raised when a discussion thread doesn't exist."""


def _clamp(limit: int, default: int) -> int:
    if limit <= 0 or limit > MAX_LIMIT:
        return default
    return limit


def extract_mentions(content: str) -> list[str]:
    """User ids @mentioned in `content`, first occurrence order, no duplicates."""
    seen: list[str] = []
    for match in MENTION_PATTERN.findall(content):
        if match not in seen:
            seen.append(match)
    return seen


class DiscussionService:
    """Thread and reply CRUD plus reply notifications."""

    def __init__(self, db: AsyncSession, notifications: Optional[NotificationService] = None):
        self.db = db
        self.notifications = notifications

    # ─── Threads ──────────────────────────────────────────

    async def list_threads(
        self, limit: int = DEFAULT_THREAD_LIMIT, offset: int = 0
    ) -> list[ThreadRead]:
        result = await self.db.execute(
            select(DiscussionThread)
            .order_by(DiscussionThread.updated_at.desc(), DiscussionThread.id.desc())
            .offset(max(offset, 0))
            .limit(_clamp(limit, DEFAULT_THREAD_LIMIT))
        )
        return [ThreadRead.from_model(t) for t in result.scalars().all()]

    async def _load_thread(self, thread_id: int) -> DiscussionThread:
        thread = await self.db.get(DiscussionThread, thread_id)
        if thread is None:
            raise ThreadNotFoundError(f"Thread {thread_id} not found")
        return thread

    async def get_thread(self, thread_id: int, include_replies: bool = False) -> ThreadRead:
        thread = await self._load_thread(thread_id)
        replies = None
        if include_replies:
            replies = await self._replies_for(thread_id, MAX_LIMIT, 0)
        return ThreadRead.from_model(thread, replies)

    async def create_thread(self, identity: Identity, payload: ThreadCreate) -> ThreadRead:
        title = clean_text(payload.title)
        if len(title) < 3:
            raise InvalidInputError("title must be at least 3 characters after sanitization")

        thread = DiscussionThread(
            title=title,
            author_id=identity.user_id,
            meta={"created_by_role": identity.role},
        )
        self.db.add(thread)
        await self.db.commit()
        await self.db.refresh(thread)

        logger.info("discussion.thread_created", thread_id=thread.id, author_id=thread.author_id)
        return ThreadRead.from_model(thread)

    async def update_thread(
        self, identity: Identity, thread_id: int, payload: ThreadUpdate
    ) -> ThreadRead:
        thread = await self._load_thread(thread_id)
        self._check_owner(identity, thread)

        if payload.title is not None:
            title = clean_text(payload.title)
            if len(title) < 3:
                raise InvalidInputError("title must be at least 3 characters after sanitization")
            thread.title = title
            await self.db.commit()
            await self.db.refresh(thread)

        return ThreadRead.from_model(thread)

    async def delete_thread(self, identity: Identity, thread_id: int) -> None:
        thread = await self._load_thread(thread_id)
        self._check_owner(identity, thread)
        # SQLite only honours ON DELETE CASCADE with foreign_keys=ON
        await self.db.execute(
            delete(DiscussionReply).where(DiscussionReply.thread_id == thread_id)
        )
        await self.db.delete(thread)
        await self.db.commit()
        logger.info("discussion.thread_deleted", thread_id=thread_id, by=identity.user_id)

    @staticmethod
    def _check_owner(identity: Identity, thread: DiscussionThread) -> None:
        if identity.user_id != thread.author_id and not identity.is_admin:
            raise PermissionDeniedError("only the author or a moderator may change this thread")

    # ─── Replies ──────────────────────────────────────────

    async def _replies_for(self, thread_id: int, limit: int, offset: int) -> list[DiscussionReply]:
        result = await self.db.execute(
            select(DiscussionReply)
            .where(DiscussionReply.thread_id == thread_id)
            .order_by(DiscussionReply.created_at.asc(), DiscussionReply.id.asc())
            .offset(max(offset, 0))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_replies(
        self, thread_id: int, limit: int = DEFAULT_REPLY_LIMIT, offset: int = 0
    ) -> list[ReplyRead]:
        await self._load_thread(thread_id)
        replies = await self._replies_for(thread_id, _clamp(limit, DEFAULT_REPLY_LIMIT), offset)
        return [ReplyRead.model_validate(r) for r in replies]

    async def create_reply(self, identity: Identity, payload: ReplyCreate) -> ReplyRead:
        thread = await self._load_thread(payload.thread_id)

        content = clean_text(payload.content)
        if not content:
            raise InvalidInputError("reply content empty after sanitization")

        reply = DiscussionReply(
            thread_id=thread.id,
            author_id=identity.user_id,
            content=content,
        )
        self.db.add(reply)
        thread.updated_at = utcnow()
        await self.db.commit()
        await self.db.refresh(reply)
        await self.db.refresh(thread)

        result = ReplyRead.model_validate(reply)
        logger.info("discussion.reply_created", reply_id=result.id, thread_id=thread.id)

        await self._notify_reply(thread.title, thread.author_id, identity.user_id, content)
        return result

    async def _notify_reply(
        self, title: str, thread_author: str, reply_author: str, content: str
    ) -> None:
        if self.notifications is None:
            return

        recipients = [thread_author] + extract_mentions(content)
        message = f"New reply in thread '{title}'"
        notified: set[str] = set()
        for user_id in recipients:
            if user_id == reply_author or user_id in notified or len(user_id) > 64:
                continue
            notified.add(user_id)
            try:
                await self.notifications.publish(NotificationCreate(
                    user_id=user_id,
                    type=REPLY_NOTIFICATION_TYPE,
                    message=message,
                ))
            except Exception as e:
                logger.warning("discussion.notify_failed", user_id=user_id, error=str(e))
