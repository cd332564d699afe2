from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.schemas.messages import MessageSchema


class ConversationUserSchema(BaseModel):
    id: str
    name: str | None
    email: str

    model_config = ConfigDict(from_attributes=True)


class ConversationSchema(BaseModel):
    id: str
    user_id: str
    admin_id: str | None
    last_message_snippet: str
    last_message_at: datetime
    user_unread_count: int
    admin_unread_count: int
    created_at: datetime
    updated_at: datetime
    user: ConversationUserSchema | None = None

    model_config = ConfigDict(from_attributes=True)


class ConversationDetailSchema(ConversationSchema):
    messages: list[MessageSchema]


class ConversationListResponseSchema(BaseModel):
    conversations: list[ConversationSchema]


class UnreadCountSchema(BaseModel):
    unread_count: int
    role: str
