"""Subscription registry — in-process fan-out to live connections.

Learn: A multimap from a key (recipient id for notifications, room id
for chat) to the bounded queues of every connection currently listening
for it. Two browser tabs for the same user are two subscriptions, and a
publish lands on both.

Delivery is best-effort by design: publish() never blocks. A queue that
is full (slow or stalled reader) or already unsubscribed simply misses
the event. The durable copy lives in the database; the live push is a
convenience on top of it.

Every subscription remembers the event loop it was created on, so a
publisher running in another thread (a sync route in the threadpool, a
second TestClient portal) hands the event over with call_soon_threadsafe
instead of touching an asyncio.Queue from the wrong thread. The queue slot
is reserved before the hand-over, so offer() reports drops exactly on
both paths.
"""

import asyncio
import threading
from collections import defaultdict
from typing import Any, Callable, Generic, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class Subscription(Generic[T]):
    """One live delivery channel. Created by SubscriptionRegistry.subscribe."""

    def __init__(self, key: str, maxsize: int, loop: asyncio.AbstractEventLoop):
        self.key = key
        self.queue: asyncio.Queue[T] = asyncio.Queue(maxsize=maxsize)
        self.loop = loop
        self.closed = False
        # Slots promised to items still on their way to the owner loop.
        self._in_flight = 0
        self._slots = threading.Lock()

    def offer(self, item: T) -> bool:
        """Enqueue without blocking. False when the item was dropped."""
        if not self._reserve():
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is self.loop:
            self._deliver(item)
            return True

        try:
            self.loop.call_soon_threadsafe(self._deliver, item)
        except RuntimeError:
            # owner loop already closed
            self._release()
            return False
        return True

    def _reserve(self) -> bool:
        with self._slots:
            if self.closed:
                return False
            if self.queue.qsize() + self._in_flight >= self.queue.maxsize:
                logger.debug("realtime.delivery_dropped", key=self.key, reason="queue_full")
                return False
            self._in_flight += 1
            return True

    def _release(self) -> None:
        with self._slots:
            self._in_flight -= 1

    def _deliver(self, item: T) -> None:
        self._release()
        if not self.closed:
            self.queue.put_nowait(item)

    async def get(self) -> T:
        return await self.queue.get()


class SubscriptionRegistry(Generic[T]):
    """Thread-safe multimap of key → live subscriptions.

    Learn: The registry owns its lock; callers never synchronise around
    it. Construct one per concern at app start (see main.create_app) and
    pass it to whatever needs to subscribe or publish.
    """

    def __init__(self, buffer_size: int = 16, name: str = "registry"):
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self.buffer_size = buffer_size
        self.name = name
        self._lock = threading.Lock()
        self._subscribers: dict[str, set[Subscription[T]]] = defaultdict(set)

    def subscribe(self, key: str) -> tuple[Subscription[T], Callable[[], None]]:
        """Register a new channel for `key`.

        Returns the subscription and a cleanup closure. The closure
        removes exactly this subscription and is safe to call repeatedly.
        Must be called from inside a running event loop.
        """
        sub: Subscription[T] = Subscription(
            key, self.buffer_size, asyncio.get_running_loop()
        )
        with self._lock:
            self._subscribers[key].add(sub)

        def unsubscribe() -> None:
            with self._lock:
                if sub.closed:
                    return
                sub.closed = True
                subs = self._subscribers.get(key)
                if subs is not None:
                    subs.discard(sub)
                    if not subs:
                        del self._subscribers[key]

        return sub, unsubscribe

    def publish(self, key: str, item: T) -> int:
        """Offer `item` to every subscription of `key`.

        Returns how many channels accepted it (dropped deliveries don't
        count). An unknown key is zero targets, not an error.
        """
        with self._lock:
            targets = list(self._subscribers.get(key, ()))
        delivered = 0
        for sub in targets:
            if sub.offer(item):
                delivered += 1
        return delivered

    def subscriber_count(self, key: str | None = None) -> int:
        """Live subscriptions for `key`, or across all keys."""
        with self._lock:
            if key is not None:
                return len(self._subscribers.get(key, ()))
            return sum(len(subs) for subs in self._subscribers.values())

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._subscribers)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "keys": len(self._subscribers),
                "subscribers": sum(len(s) for s in self._subscribers.values()),
            }
