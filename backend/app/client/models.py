from __future__ import annotations

import dataclasses
from datetime import datetime, timezone
from typing import Any


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    # SQLite hands back naive datetimes; everything the server stores is UTC.
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclasses.dataclass(frozen=True)
class ChatMessage:
    id: str
    conversation_id: str
    sender_role: str
    content: str
    created_at: datetime
    sender_id: str | None = None
    media_type: str | None = None
    media_url: str | None = None
    read_at: datetime | None = None

    @classmethod
    def from_payload(cls, data: dict) -> "ChatMessage":
        if not data or not data.get("id"):
            raise ValueError("message payload has no id")
        return cls(
            id=str(data["id"]),
            conversation_id=str(data["conversation_id"]),
            sender_role=data["sender_role"],
            content=data.get("content") or "",
            created_at=_parse_timestamp(data["created_at"]),
            sender_id=data.get("sender_id"),
            media_type=data.get("media_type"),
            media_url=data.get("media_url"),
            read_at=_parse_timestamp(data.get("read_at")),
        )


@dataclasses.dataclass(frozen=True)
class ConversationSnapshot:
    id: str
    user_id: str
    last_message_snippet: str
    user_unread_count: int
    admin_unread_count: int
    user_name: str | None = None
    messages: tuple[ChatMessage, ...] = ()

    def unread_for(self, role: str) -> int:
        return self.admin_unread_count if role == "admin" else self.user_unread_count

    @classmethod
    def from_payload(cls, data: dict) -> "ConversationSnapshot":
        user = data.get("user") or {}
        return cls(
            id=str(data["id"]),
            user_id=str(data["user_id"]),
            last_message_snippet=data.get("last_message_snippet") or "",
            user_unread_count=int(data.get("user_unread_count") or 0),
            admin_unread_count=int(data.get("admin_unread_count") or 0),
            user_name=user.get("name"),
            messages=tuple(ChatMessage.from_payload(m) for m in data.get("messages") or ()),
        )


@dataclasses.dataclass(frozen=True)
class Toast:
    title: str
    message: str
    conversation_id: str


@dataclasses.dataclass(frozen=True)
class Draft:
    """Unsent input handed back to the composer when a send fails."""

    content: str | None
    media_type: str | None = None
    media_url: str | None = None
