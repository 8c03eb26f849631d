"""Chat routes — history over HTTP, live rooms over websocket.

Learn: The websocket handshake is where Connecting → Authenticated
happens. The socket is accepted first so the client actually sees the
close code:
- 4401 when no valid token came with the upgrade
- 4400 when room_id is missing
Only then is a ChatSession started (see realtime/chat.py).
"""

from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, WebSocket

from gema.api.deps import get_chat_service
from gema.auth.dependencies import Identity, get_current_identity, identity_from_websocket
from gema.config import settings
from gema.middleware.correlation import correlation_id_from_headers
from gema.realtime.chat import CLOSE_BAD_REQUEST, CLOSE_UNAUTHORIZED, ChatSession
from gema.schemas.chat import ChatHistoryQuery
from gema.schemas.common import ok
from gema.services.chat_service import ChatConnectionOptions, ChatService

logger = structlog.get_logger()

router = APIRouter(prefix="/chat")


@router.get("/history")
async def chat_history(
    room_id: str = Query(..., min_length=3, max_length=128),
    before: Optional[datetime] = Query(None),
    limit: int = Query(50, ge=1, le=100),
    _: Identity = Depends(get_current_identity),
    svc: ChatService = Depends(get_chat_service),
):
    """Page backwards through a room: pass the oldest created_at as `before`."""
    query = ChatHistoryQuery(room_id=room_id, before=before, limit=limit)
    messages = await svc.history(query)
    return ok("chat history retrieved", [m.model_dump(mode="json") for m in messages])


@router.websocket("/ws")
async def chat_socket(
    websocket: WebSocket,
    svc: ChatService = Depends(get_chat_service),
):
    identity = identity_from_websocket(websocket)
    room_id = (websocket.query_params.get("room_id") or "").strip()

    await websocket.accept()
    if identity is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="authentication required")
        return
    if not room_id:
        await websocket.close(code=CLOSE_BAD_REQUEST, reason="room_id is required")
        return

    options = ChatConnectionOptions(
        user_id=identity.user_id,
        role=identity.role,
        room_id=room_id,
        correlation_id=correlation_id_from_headers(websocket.headers),
    )
    logger.info(
        "chat.connection_opened",
        user_id=options.user_id,
        room_id=options.room_id,
        correlation_id=options.correlation_id,
    )
    try:
        await ChatSession(
            websocket, svc, options, ping_interval=settings.chat_ping_interval_seconds
        ).serve()
    finally:
        logger.info(
            "chat.connection_closed",
            user_id=options.user_id,
            room_id=options.room_id,
            correlation_id=options.correlation_id,
        )
