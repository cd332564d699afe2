from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class MessageSchema(BaseModel):
    id: str
    conversation_id: str
    sender_id: str | None
    sender_role: str
    content: str
    media_type: str | None
    media_url: str | None
    created_at: datetime
    read_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class MessageCreateSchema(BaseModel):
    # Loosely typed on purpose: the store raises ValidationError (400) with a
    # readable message instead of a generic 422.
    conversation_id: str | None = None
    content: str | None = None
    media_type: str | None = None
    media_url: str | None = None


class MarkReadSchema(BaseModel):
    conversation_id: str | None = None


class MarkReadResponseSchema(BaseModel):
    message: str
    conversation_id: str
    marked: int


class MessageEventSchema(BaseModel):
    """Payload of the ``new-message`` event fanned out over pub/sub."""

    conversation_id: str
    message: MessageSchema
    sender_name: str
    sender_role: str
