"""Server-sent-event streaming of notifications.

Learn: One NotificationStreamSession drives one browser connection:

    subscribe(recipient)
    events():   notification arrives → "event: notification\\ndata: {...}\\n\\n"
    keepalive(): ping timer fires    → ": keep-alive 2026-01-01T00:00:00Z\\n\\n"
    cancelled                        → stop
    finally: unsubscribe()

The transport is sse_starlette's EventSourceResponse. It runs the event
generator, the ping timer, a disconnect watcher and a server-exit
watcher (it hooks uvicorn's signal handler) in one task group. Whichever
finishes first cancels the rest, so "client went away" and "server is
shutting down" both arrive as a cancellation of the generator. The
ping timer is independent of the generator, so notification traffic
never postpones a keep-alive.

The registry subscription is released in the generator's `finally` and
again, idempotently, when the response returns. A send that fails
mid-stream leaves the generator suspended; the second release covers it.
"""

import json
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

import structlog
from sse_starlette import EventSourceResponse, ServerSentEvent
from starlette.types import Receive, Scope, Send

from gema.realtime.registry import SubscriptionRegistry
from gema.schemas.notification import NotificationRead

logger = structlog.get_logger()

DEFAULT_CLIENT_TIMEOUT = 30.0

# Plain LF framing; sse_starlette defaults to CRLF.
SEPARATOR = "\n"

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def keepalive_interval(timeout: float, minimum: float = 1.0) -> float:
    """Half the client idle timeout, never below `minimum`.

    A non-positive timeout means "use the default" (30s → 15s ticks).
    """
    if timeout <= 0:
        timeout = DEFAULT_CLIENT_TIMEOUT
    return max(timeout / 2, minimum)


def format_notification_event(notification: NotificationRead) -> ServerSentEvent:
    payload = json.dumps(notification.model_dump(mode="json"), separators=(",", ":"))
    return ServerSentEvent(data=payload, event="notification", sep=SEPARATOR)


def format_keepalive(now: Optional[datetime] = None) -> ServerSentEvent:
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return ServerSentEvent(
        comment=f"keep-alive {now.strftime('%Y-%m-%dT%H:%M:%SZ')}", sep=SEPARATOR
    )


class NotificationStreamSession:
    """The event source for one SSE client."""

    def __init__(
        self,
        registry: SubscriptionRegistry[NotificationRead],
        recipient: str,
        *,
        interval: float,
        correlation_id: str = "",
    ):
        self.registry = registry
        self.recipient = recipient
        self.interval = interval
        self.correlation_id = correlation_id
        self.sent_notifications = 0
        self.sent_keepalives = 0
        self._unsubscribe = None
        self._closed = False
        self.log = logger.bind(user_id=recipient, correlation_id=correlation_id)

    async def events(self) -> AsyncIterator[ServerSentEvent]:
        """Yield notification events until cancelled."""
        subscription, self._unsubscribe = self.registry.subscribe(self.recipient)
        self.log.info("notifications.stream_opened", interval=self.interval)
        try:
            while True:
                notification = await subscription.get()
                self.sent_notifications += 1
                yield format_notification_event(notification)
        finally:
            self.close()

    def keepalive(self) -> ServerSentEvent:
        self.sent_keepalives += 1
        return format_keepalive()

    def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.log.info(
            "notifications.stream_closed",
            notifications=self.sent_notifications,
            keepalives=self.sent_keepalives,
        )

    def response(self, headers: Optional[dict] = None) -> "NotificationStreamResponse":
        return NotificationStreamResponse(self, headers=headers)


class NotificationStreamResponse(EventSourceResponse):
    """EventSourceResponse bound to a session's events and keep-alives."""

    def __init__(self, session: NotificationStreamSession, headers: Optional[dict] = None):
        super().__init__(
            session.events(),
            headers={**STREAM_HEADERS, **(headers or {})},
            ping=session.interval,
            ping_message_factory=session.keepalive,
            sep=SEPARATOR,
        )
        self.session = session

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        except OSError as e:
            self.session.log.debug("notifications.stream_write_failed", error=str(e))
        finally:
            self.session.close()
