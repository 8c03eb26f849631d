"""Pydantic schemas for discussion threads and replies."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ThreadCreate(BaseModel):
    title: str = Field(..., min_length=3, max_length=255)


class ThreadUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=3, max_length=255)


class ReplyCreate(BaseModel):
    thread_id: int = Field(..., ge=1)
    content: str = Field(..., min_length=1, max_length=5000)


class ReplyRead(BaseModel):
    id: int
    thread_id: int
    author_id: str
    content: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ThreadRead(BaseModel):
    id: int
    title: str
    author_id: str
    metadata: dict[str, str] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    replies: Optional[list[ReplyRead]] = None

    @classmethod
    def from_model(cls, thread, replies=None) -> "ThreadRead":
        """Build from an ORM thread without touching its lazy replies."""
        return cls(
            id=thread.id,
            title=thread.title,
            author_id=thread.author_id,
            metadata={k: str(v) for k, v in (thread.meta or {}).items()},
            created_at=thread.created_at,
            updated_at=thread.updated_at,
            replies=[ReplyRead.model_validate(r) for r in replies] if replies is not None else None,
        )
