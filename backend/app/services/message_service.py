from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from app.config import settings
from app.models.conversation import Conversation
from app.models.message import MEDIA_PLACEHOLDERS, MEDIA_TYPES, Message, SenderRole
from app.models.user import User
from app.schemas.messages import MessageCreateSchema
from app.services.conversation_service import get_conversation, get_conversation_for
from app.services.errors import RateLimitError, ValidationError
from app.services.principal import Principal
from app.services.rate_limiter import RateLimiter
from app.services.realtime import Publisher, fan_out_message
from app.tasks.notification_tasks import send_message_email

logger = logging.getLogger(__name__)

MAX_CONTENT_LENGTH = 5000
SNIPPET_LENGTH = 100


def _validate_fields(
    content: str | None,
    media_type: str | None,
    media_url: str | None,
) -> None:
    if (not content or not content.strip()) and not media_url:
        raise ValidationError("Message content or media is required")
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise ValidationError(f"Message content cannot exceed {MAX_CONTENT_LENGTH} characters")
    if media_url and not media_type:
        raise ValidationError("Media type is required when media URL is provided")
    if media_type and media_type not in MEDIA_TYPES:
        raise ValidationError("Invalid media type. Must be 'image' or 'video'")


def display_text(content: str | None, media_type: str | None) -> str:
    """Trimmed text, or the media placeholder for a media-only message."""
    text = (content or "").strip()
    if text:
        return text
    return MEDIA_PLACEHOLDERS.get(media_type or "", "")


def _persist(
    db: Session,
    conversation: Conversation,
    sender_role: SenderRole,
    sender_id: str | None,
    content: str | None,
    media_type: str | None,
    media_url: str | None,
) -> Message:
    now = datetime.now(timezone.utc)
    text = display_text(content, media_type)

    message = Message(
        conversation_id=conversation.id,
        sender_id=sender_id,
        sender_role=sender_role.value,
        content=text,
        media_type=media_type if media_url else None,
        media_url=media_url or None,
        created_at=now,
        read_at=None,
    )
    db.add(message)

    conversation.last_message_snippet = text[:SNIPPET_LENGTH]
    conversation.last_message_at = now
    conversation.updated_at = now
    # SQL-side increment; concurrent sends cannot overwrite each other's bump.
    counter = sender_role.opposite.unread_counter
    setattr(conversation, counter, getattr(Conversation, counter) + 1)

    db.commit()
    db.refresh(message)
    db.refresh(conversation)
    logger.debug(
        "stored message %s in conversation %s (role=%s)",
        message.id,
        conversation.id,
        sender_role.value,
    )
    return message


def create_message(
    db: Session,
    conversation_id: str | None,
    sender_role: SenderRole,
    sender_id: str | None = None,
    content: str | None = None,
    media_type: str | None = None,
    media_url: str | None = None,
) -> Message:
    """Append a message and update the owning conversation's preview and counters.

    Raises ValidationError on bad input and NotFoundError if the conversation
    does not exist.
    """
    _validate_fields(content, media_type, media_url)
    conversation = get_conversation(db, conversation_id)
    return _persist(db, conversation, SenderRole(sender_role), sender_id, content, media_type, media_url)


def mark_read(db: Session, conversation_id: str | None, reader_role: SenderRole) -> int:
    """Flip every unread message from the other party to read and zero the reader's counter.

    A single conditional bulk UPDATE followed by one counter reset. A message
    created between the two statements stays unread but uncounted until the
    reader's next mark_read flips it.
    """
    reader_role = SenderRole(reader_role)
    conversation = get_conversation(db, conversation_id)
    now = datetime.now(timezone.utc)

    flipped = (
        db.query(Message)
        .filter(
            Message.conversation_id == conversation.id,
            Message.read_at.is_(None),
            Message.sender_role == reader_role.opposite.value,
        )
        .update({Message.read_at: now}, synchronize_session="fetch")
    )
    setattr(conversation, reader_role.unread_counter, 0)
    db.commit()

    logger.debug(
        "mark_read: conversation=%s reader=%s flipped=%d",
        conversation.id,
        reader_role.value,
        flipped,
    )
    return flipped


def _sender_name(db: Session, sender_role: SenderRole, sender_id: str | None) -> str:
    if sender_role is SenderRole.ADMIN:
        return "Admin"
    user = db.query(User).filter(User.id == sender_id).first() if sender_id else None
    return (user.name if user and user.name else None) or "User"


def _enqueue_email(
    db: Session,
    conversation: Conversation,
    message: Message,
    sender_name: str,
) -> None:
    if message.sender_role == SenderRole.USER.value:
        to, to_admin, recipient_name = settings.ADMIN_EMAIL, True, None
    else:
        customer = db.query(User).filter(User.id == conversation.user_id).first()
        if customer is None or not customer.email:
            return
        to, to_admin, recipient_name = customer.email, False, customer.name
    try:
        send_message_email.delay(
            to, sender_name, message.content, conversation.id, to_admin, recipient_name
        )
    except Exception as exc:
        logger.warning(
            "send_message: could not enqueue email for message %s: %s", message.id, exc
        )


def send_message(
    db: Session,
    principal: Principal,
    body: MessageCreateSchema,
    *,
    rate_limiter: RateLimiter,
    publisher: Publisher,
) -> Message:
    """Validate, authorize, rate-limit, store, then fan out a message.

    Once stored the send counts as successful; push and email failures are
    logged and do not surface to the caller.
    """
    _validate_fields(body.content, body.media_type, body.media_url)
    conversation = get_conversation_for(db, body.conversation_id, principal)

    sender_role = principal.role
    sender_id = None if principal.is_admin else principal.user_id

    if not principal.is_admin:
        try:
            rate_limiter.hit(principal.user_id)
        except RateLimitError:
            logger.info("send_message: rate limit hit for user %s", principal.user_id)
            raise

    message = _persist(
        db,
        conversation,
        sender_role,
        sender_id,
        body.content,
        body.media_type,
        body.media_url,
    )

    sender_name = _sender_name(db, sender_role, sender_id)
    fan_out_message(publisher, conversation, message, sender_name)
    _enqueue_email(db, conversation, message, sender_name)
    return message
