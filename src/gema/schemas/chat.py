"""Pydantic schemas for room chat.

Learn: ChatSendRequest is what a client writes on the websocket;
ChatMessageRead is what every socket in the room receives and what the
history endpoint returns.
"""

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

MessageType = Literal["text", "image", "file", "system"]


class ChatSendRequest(BaseModel):
    """A message sent by a client over the chat socket."""
    room_id: str = Field("", max_length=128, description="Defaults to the connection's room")
    content: str = Field(..., min_length=1, max_length=4000)
    type: MessageType = "text"
    receiver_id: Optional[str] = Field(None, max_length=64)

    @field_validator("room_id", "receiver_id")
    @classmethod
    def _strip(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) else value


class ChatHistoryQuery(BaseModel):
    """Filters for GET /chat/history."""
    room_id: str = Field(..., min_length=3, max_length=128)
    before: Optional[datetime] = Field(None, description="Exclusive upper bound (RFC 3339)")
    limit: int = Field(50, ge=1, le=100)

    @field_validator("before")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ChatMessageRead(BaseModel):
    id: int
    room_id: str
    sender_id: str
    receiver_id: Optional[str] = None
    content: str
    type: str
    created_at: datetime

    model_config = {"from_attributes": True}
