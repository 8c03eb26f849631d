"""Cross-node relay tests.

Learn: handle_message() is the whole consumer side, so it's tested
directly with hand-built envelopes. The publish side is checked with a
tiny fake that records what would have gone to Redis.
"""

import json
from datetime import datetime, timezone

import pytest

from gema.realtime.pubsub import RealtimeRelay
from gema.realtime.registry import SubscriptionRegistry
from gema.schemas.chat import ChatMessageRead
from gema.schemas.notification import NotificationRead

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class RecordingRedis:
    def __init__(self):
        self.published: list[tuple[str, str]] = []

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1


def _relay(node_id="node-a"):
    return RealtimeRelay(
        RecordingRedis(),
        "gema",
        SubscriptionRegistry(),
        SubscriptionRegistry(),
        node_id=node_id,
    )


def _notification_payload(**overrides) -> dict:
    payload = {
        "id": 1,
        "user_id": "42",
        "type": "grade",
        "message": "Graded",
        "read": False,
        "created_at": NOW.isoformat(),
        "updated_at": NOW.isoformat(),
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_publish_wraps_envelope_on_kind_channel():
    relay = _relay()
    notification = NotificationRead.model_validate(_notification_payload())
    await relay.publish_notification(notification)

    channel, raw = relay.redis.published[0]
    assert channel == "gema:notifications"
    event = json.loads(raw)
    assert event["source"] == "node-a"
    assert event["kind"] == "notification"
    assert event["payload"]["user_id"] == "42"
    assert "sent_at" in event


@pytest.mark.asyncio
async def test_chat_goes_to_chat_channel():
    relay = _relay()
    message = ChatMessageRead(
        id=1, room_id="room-1", sender_id="1", content="hi", type="text", created_at=NOW
    )
    await relay.publish_chat(message)
    assert relay.redis.published[0][0] == "gema:chat"


@pytest.mark.asyncio
async def test_remote_notification_fans_out_locally():
    relay = _relay()
    sub, unsubscribe = relay.notifications.subscribe("42")
    raw = json.dumps({
        "source": "node-b",
        "kind": "notification",
        "payload": _notification_payload(),
        "sent_at": NOW.isoformat(),
    })

    assert relay.handle_message(raw) is True
    delivered = await sub.get()
    assert delivered.message == "Graded"
    unsubscribe()


@pytest.mark.asyncio
async def test_remote_chat_fans_out_by_room():
    relay = _relay()
    sub, unsubscribe = relay.chat.subscribe("room-1")
    raw = json.dumps({
        "source": "node-b",
        "kind": "chat",
        "payload": {
            "id": 3, "room_id": "room-1", "sender_id": "1", "receiver_id": None,
            "content": "hi", "type": "text", "created_at": NOW.isoformat(),
        },
        "sent_at": NOW.isoformat(),
    })

    assert relay.handle_message(raw) is True
    assert (await sub.get()).id == 3
    unsubscribe()


@pytest.mark.asyncio
async def test_own_events_are_skipped():
    relay = _relay(node_id="node-a")
    sub, unsubscribe = relay.notifications.subscribe("42")
    raw = json.dumps({"source": "node-a", "kind": "notification", "payload": _notification_payload()})

    assert relay.handle_message(raw) is False
    assert sub.queue.empty()
    unsubscribe()


@pytest.mark.parametrize("raw", [
    "not json",
    json.dumps({"kind": "notification"}),
    json.dumps({"source": "node-b", "kind": "notification", "payload": {"id": "x"}}),
    json.dumps({"source": "node-b", "kind": "mystery", "payload": {}}),
])
def test_malformed_events_are_skipped(raw):
    assert _relay().handle_message(raw) is False
