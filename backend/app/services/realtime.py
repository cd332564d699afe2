from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Protocol

import redis as redis_module

from app.config import settings
from app.models.message import SenderRole
from app.schemas.messages import MessageEventSchema, MessageSchema
from app.services.errors import DeliveryWarning

if TYPE_CHECKING:
    from app.models.conversation import Conversation
    from app.models.message import Message

logger = logging.getLogger(__name__)

ADMIN_CHANNEL = "admin-messages"
NEW_MESSAGE_EVENT = "new-message"


def admin_channel() -> str:
    return ADMIN_CHANNEL


def user_channel(user_id: str) -> str:
    return f"user-{user_id}-messages"


def recipient_channel(conversation: "Conversation", sender_role: SenderRole) -> str:
    """Messages from a customer go to the shared admin inbox, admin replies to the customer."""
    if sender_role is SenderRole.USER:
        return admin_channel()
    return user_channel(conversation.user_id)


class Publisher(Protocol):
    def publish(self, channel: str, event: str, payload: dict) -> None: ...


class NoopPublisher:
    """Used when real-time delivery is switched off; clients rely on polling."""

    def publish(self, channel: str, event: str, payload: dict) -> None:
        logger.debug("realtime disabled, skipping %s on %s", event, channel)


class RedisPublisher:
    def __init__(self, client) -> None:
        self._redis = client

    def publish(self, channel: str, event: str, payload: dict) -> None:
        data = json.dumps({"event": event, "data": payload}, default=str)
        try:
            self._redis.publish(channel, data)
        except redis_module.RedisError as exc:
            raise DeliveryWarning(f"publish to {channel} failed: {exc}") from exc


_publisher: Publisher | None = None


def get_publisher() -> Publisher:
    global _publisher
    if _publisher is not None:
        return _publisher
    if settings.REALTIME_ENABLED:
        _publisher = RedisPublisher(redis_module.from_url(settings.REDIS_URL))
    else:
        _publisher = NoopPublisher()
    return _publisher


def build_event(message: "Message", sender_name: str) -> dict:
    event = MessageEventSchema(
        conversation_id=message.conversation_id,
        message=MessageSchema.model_validate(message),
        sender_name=sender_name,
        sender_role=message.sender_role,
    )
    return event.model_dump(mode="json")


def fan_out_message(
    publisher: Publisher,
    conversation: "Conversation",
    message: "Message",
    sender_name: str,
) -> bool:
    """Best-effort push of a stored message to the recipient's channel.

    Returns False when delivery failed. The message is already persisted, and
    the recipient's polling loop picks it up on its next cycle.
    """
    channel = recipient_channel(conversation, SenderRole(message.sender_role))
    try:
        publisher.publish(channel, NEW_MESSAGE_EVENT, build_event(message, sender_name))
    except DeliveryWarning as exc:
        logger.warning("fan_out_message: message %s not pushed: %s", message.id, exc)
        return False
    logger.debug("fan_out_message: message %s pushed to %s", message.id, channel)
    return True
