from __future__ import annotations

from typing import Iterable

from app.client.models import ChatMessage


class MessageTimeline:
    """Local, deduplicated, chronologically sorted view of one conversation.

    Every source of messages (initial load, push, poll, own sends) goes through
    ``merge`` so that a message delivered twice is kept once.
    """

    def __init__(self, messages: Iterable[ChatMessage] = ()) -> None:
        self._messages: list[ChatMessage] = []
        self._ids: set[str] = set()
        self.merge_many(messages)

    def merge(self, message: ChatMessage) -> bool:
        """Insert ``message`` unless its id is already present. Returns True if inserted."""
        if message.id in self._ids:
            return False
        self._ids.add(message.id)
        self._messages.append(message)
        # list.sort is stable: equal timestamps keep arrival order.
        self._messages.sort(key=lambda m: m.created_at)
        return True

    def merge_many(self, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        return [m for m in messages if self.merge(m)]

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return tuple(self._messages)

    @property
    def latest(self) -> ChatMessage | None:
        return self._messages[-1] if self._messages else None

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._messages)
