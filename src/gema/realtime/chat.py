"""Chat connection session — one websocket, one room.

Learn: Lifecycle is Connecting → Authenticated → Active → Closed.
The endpoint (api/chat.py) does the first two steps: it rejects the
upgrade with 4401 when there is no identity and 4400 when room_id is
missing, before anything is allocated. ChatSession is the Active part.

Two concurrent tasks run:
1. Reader — client frames → ChatService.send (persist + room fan-out)
2. Writer — the room subscription → client, plus an idle ping

When either side finishes (usually client disconnect), the other is
cancelled, and the room subscription is released in `finally`.
Replies meant only for this client (pong, errors, acks for messages
posted into another room) go through the same subscription queue, so
only the writer ever sends on the socket.

No reconnection or replay happens here — clients page /chat/history.
"""

import asyncio
import json

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from starlette.websockets import WebSocketState

from gema.realtime.registry import Subscription
from gema.schemas.chat import ChatSendRequest
from gema.services.chat_service import ChatConnectionOptions, ChatService
from gema.services.errors import ServiceError

logger = structlog.get_logger()

CLOSE_BAD_REQUEST = 4400
CLOSE_UNAUTHORIZED = 4401


def _error_frame(error: str) -> dict:
    return {"type": "error", "error": error}


class ChatSession:
    """Drives one accepted chat websocket until it closes."""

    def __init__(
        self,
        websocket: WebSocket,
        service: ChatService,
        options: ChatConnectionOptions,
        *,
        ping_interval: float = 30.0,
    ):
        self.websocket = websocket
        self.service = service
        self.options = options
        self.ping_interval = ping_interval
        self.log = logger.bind(
            user_id=options.user_id,
            room_id=options.room_id,
            correlation_id=options.correlation_id,
        )

    async def serve(self) -> None:
        subscription, unsubscribe = self.service.registry.subscribe(self.options.room_id)
        reader = asyncio.create_task(self._reader(subscription))
        writer = asyncio.create_task(self._writer(subscription))
        try:
            done, pending = await asyncio.wait(
                {reader, writer}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self.log.warning("chat.session_failed", error=str(task.exception()))
        finally:
            reader.cancel()
            writer.cancel()
            unsubscribe()
            if self.websocket.client_state == WebSocketState.CONNECTED:
                try:
                    await self.websocket.close()
                except RuntimeError:
                    pass

    async def _reader(self, subscription: Subscription) -> None:
        """Read client frames until the socket closes."""
        while True:
            incoming = await self.websocket.receive()
            if incoming["type"] == "websocket.disconnect":
                self.log.debug("chat.read_loop_ended", code=incoming.get("code"))
                return

            raw = incoming.get("text")
            if raw is None:
                subscription.offer(_error_frame("binary frames are not supported"))
                continue

            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                subscription.offer(_error_frame("invalid JSON"))
                continue

            if isinstance(frame, dict) and frame.get("type") == "ping":
                subscription.offer({"type": "pong"})
                continue

            try:
                request = ChatSendRequest.model_validate(frame)
            except ValidationError as e:
                err = e.errors()[0]
                field = ".".join(str(p) for p in err.get("loc", ()))
                subscription.offer(_error_frame(f"{field}: {err['msg']}" if field else err["msg"]))
                continue

            try:
                message = await self.service.send(self.options, request)
            except ServiceError as e:
                self.log.warning("chat.message_rejected", error=str(e))
                subscription.offer(_error_frame(str(e)))
                continue
            except SQLAlchemyError as e:
                self.log.warning("chat.message_store_failed", error=str(e))
                await self.service.db.rollback()
                subscription.offer(_error_frame("message could not be saved"))
                continue

            # Room fan-out already reached us if we're in that room.
            if message.room_id != self.options.room_id:
                subscription.offer(message)

    async def _writer(self, subscription: Subscription) -> None:
        """Forward room traffic to the client; ping when idle."""
        while True:
            try:
                item = await asyncio.wait_for(subscription.get(), self.ping_interval)
            except asyncio.TimeoutError:
                item = {"type": "ping"}

            payload = item.model_dump(mode="json") if isinstance(item, BaseModel) else item
            try:
                await self.websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                self.log.debug("chat.write_loop_ended", error=str(e))
                return
