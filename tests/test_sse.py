"""Tests for the SSE notification stream.

Learn: An infinite text/event-stream can't be consumed through
ASGITransport (it buffers the whole body), so the stream is tested in
layers:
1. NotificationStreamSession.events driven directly — framing, order,
   cleanup
2. NotificationStreamResponse called as a raw ASGI app with a scripted
   receive() — headers, keep-alive cadence, disconnect, server exit,
   write failure
The full route behind the middleware stack is covered in
test_notifications_api.py.
"""

import asyncio
import contextlib
from datetime import datetime, timezone

import pytest

from gema.realtime.registry import SubscriptionRegistry
from gema.realtime.sse import (
    NotificationStreamSession,
    format_keepalive,
    format_notification_event,
    keepalive_interval,
)
from gema.schemas.notification import NotificationRead


def _notification(id_: int = 1, user_id: str = "42", message: str = "hi") -> NotificationRead:
    now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
    return NotificationRead(
        id=id_,
        user_id=user_id,
        type="general",
        message=message,
        read=False,
        created_at=now,
        updated_at=now,
    )


async def _wait_for(predicate, timeout: float = 2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class ScriptedClient:
    """ASGI receive/send pair for one streaming request."""

    def __init__(self, fail_sends_after: int | None = None):
        self.sent: list[dict] = []
        self.disconnected = asyncio.Event()
        self.fail_sends_after = fail_sends_after
        self._requested = False

    async def receive(self) -> dict:
        if not self._requested:
            self._requested = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self.disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: dict) -> None:
        if self.fail_sends_after is not None and len(self.sent) >= self.fail_sends_after:
            raise ConnectionResetError("client gone")
        self.sent.append(message)

    @property
    def bodies(self) -> list[bytes]:
        return [m["body"] for m in self.sent if m["type"] == "http.response.body" and m["body"]]

    def keepalives(self) -> list[bytes]:
        return [b for b in self.bodies if b.startswith(b": keep-alive ")]


def _scope() -> dict:
    return {"type": "http", "method": "GET", "path": "/api/v2/notifications/stream", "headers": []}


# ─── Framing ────────────────────────────────────────────

def test_keepalive_interval_is_half_the_timeout():
    assert keepalive_interval(30.0) == 15.0
    assert keepalive_interval(10.0) == 5.0


def test_keepalive_interval_floor_and_default():
    assert keepalive_interval(1.0) == 1.0
    assert keepalive_interval(0.5, minimum=0.1) == 0.25
    assert keepalive_interval(0) == 15.0
    assert keepalive_interval(-5) == 15.0


def test_notification_event_framing():
    frame = format_notification_event(_notification(7, message="Graded")).encode()
    assert frame.startswith(b"event: notification\ndata: {")
    assert frame.endswith(b"}\n\n")
    assert b'"id":7' in frame
    assert b'"message":"Graded"' in frame
    assert b'"read":false' in frame
    # single data line
    assert frame.count(b"\n") == 3


def test_keepalive_framing():
    now = datetime(2026, 3, 4, 5, 6, 7, tzinfo=timezone.utc)
    assert format_keepalive(now).encode() == b": keep-alive 2026-03-04T05:06:07Z\n\n"


# ─── Session events ─────────────────────────────────────

@pytest.mark.asyncio
async def test_session_streams_notifications_for_its_user_only():
    registry = SubscriptionRegistry(buffer_size=16)
    session = NotificationStreamSession(registry, "42", interval=10.0)
    events = session.events()

    pending = asyncio.ensure_future(events.__anext__())
    await _wait_for(lambda: registry.subscriber_count("42") == 1)

    registry.publish("43", _notification(1, user_id="43"))
    registry.publish("42", _notification(2))
    event = await asyncio.wait_for(pending, 1.0)

    assert b'"id":2' in event.encode()
    assert session.sent_notifications == 1

    await events.aclose()
    assert registry.subscriber_count("42") == 0


@pytest.mark.asyncio
async def test_session_preserves_publish_order():
    registry = SubscriptionRegistry(buffer_size=16)
    session = NotificationStreamSession(registry, "42", interval=10.0)
    events = session.events()

    first = asyncio.ensure_future(events.__anext__())
    await _wait_for(lambda: registry.subscriber_count("42") == 1)
    for i in range(1, 6):
        registry.publish("42", _notification(i))

    frames = [(await first).encode()]
    for _ in range(4):
        frames.append((await events.__anext__()).encode())

    ids = [int(f.split(b'"id":')[1].split(b",")[0]) for f in frames]
    assert ids == [1, 2, 3, 4, 5]
    await events.aclose()


def test_session_close_is_idempotent():
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=1.0)
    session.close()
    session.close()
    assert registry.subscriber_count() == 0


# ─── ASGI response ──────────────────────────────────────

@pytest.mark.asyncio
async def test_response_headers_frames_and_disconnect():
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=10.0)
    client = ScriptedClient()

    task = asyncio.create_task(session.response()(_scope(), client.receive, client.send))
    await _wait_for(lambda: registry.subscriber_count("42") == 1)
    registry.publish("42", _notification(9))
    await _wait_for(lambda: len(client.bodies) == 1)

    client.disconnected.set()
    await asyncio.wait_for(task, timeout=2.0)

    start = client.sent[0]
    assert start["type"] == "http.response.start"
    assert start["status"] == 200
    headers = {k.decode(): v.decode() for k, v in start["headers"]}
    assert headers["content-type"].startswith("text/event-stream")
    assert headers["cache-control"] == "no-cache"
    assert headers["connection"] == "keep-alive"
    assert headers["x-accel-buffering"] == "no"
    assert "content-length" not in headers

    assert client.bodies[0].startswith(b"event: notification\ndata: ")
    assert registry.subscriber_count("42") == 0


@pytest.mark.asyncio
async def test_keepalive_cadence_is_exact_when_idle():
    """Open for 0.55s at a 0.1s tick: five keep-alives, nothing else."""
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=0.1)
    client = ScriptedClient()

    task = asyncio.create_task(session.response()(_scope(), client.receive, client.send))
    await asyncio.sleep(0.55)
    client.disconnected.set()
    await asyncio.wait_for(task, timeout=2.0)

    assert len(client.keepalives()) == 5
    assert client.bodies == client.keepalives()
    assert session.sent_keepalives == 5


@pytest.mark.asyncio
async def test_no_writes_after_disconnect():
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=0.05)
    client = ScriptedClient()

    task = asyncio.create_task(session.response()(_scope(), client.receive, client.send))
    await _wait_for(lambda: len(client.keepalives()) >= 1)
    client.disconnected.set()
    await asyncio.wait_for(task, timeout=2.0)

    written = len(client.sent)
    assert registry.publish("42", _notification(1)) == 0
    await asyncio.sleep(0.2)
    assert len(client.sent) == written


@pytest.mark.asyncio
async def test_server_exit_ends_open_stream(server_exit):
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=10.0)
    client = ScriptedClient()

    task = asyncio.create_task(session.response()(_scope(), client.receive, client.send))
    await _wait_for(lambda: registry.subscriber_count("42") == 1)

    server_exit()
    await asyncio.wait_for(task, timeout=2.0)

    assert registry.subscriber_count("42") == 0
    assert not client.disconnected.is_set()


@pytest.mark.asyncio
async def test_write_failure_ends_stream_and_unsubscribes():
    registry = SubscriptionRegistry()
    session = NotificationStreamSession(registry, "42", interval=0.05)
    # headers go through, the first keep-alive fails
    client = ScriptedClient(fail_sends_after=1)

    task = asyncio.create_task(session.response()(_scope(), client.receive, client.send))
    done, _ = await asyncio.wait({task}, timeout=2.0)

    assert task in done
    assert registry.subscriber_count("42") == 0
    # depending on the transport, the send error may surface from the task
    with contextlib.suppress(Exception):
        task.result()
