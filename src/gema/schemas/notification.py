"""Pydantic schemas for notifications.

Learn: NotificationRead is also the payload of the SSE `notification`
event, so the live push and the list endpoint show the same shape.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class NotificationCreate(BaseModel):
    """Publish a notification to one recipient."""
    user_id: str = Field(..., min_length=1, max_length=64, description="Recipient key")
    type: str = Field(..., min_length=1, max_length=64, description="Category tag, e.g. 'assignment'")
    message: str = Field(..., min_length=1, max_length=2000)


class NotificationRead(BaseModel):
    id: int
    user_id: str
    type: str
    message: str
    read: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
