from __future__ import annotations

import logging
import uuid

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from app.models.conversation import Conversation
from app.models.message import Message
from app.services.errors import AuthorizationError, NotFoundError, ValidationError
from app.services.principal import Principal

logger = logging.getLogger(__name__)


def _validate_id(conversation_id: str | None) -> str:
    if not conversation_id:
        raise ValidationError("Conversation ID is required")
    try:
        uuid.UUID(str(conversation_id))
    except ValueError:
        raise ValidationError("Invalid conversation ID format")
    return str(conversation_id)


def _find_for_user(db: Session, user_id: str) -> Conversation | None:
    return (
        db.query(Conversation)
        .filter(Conversation.user_id == user_id)
        .order_by(Conversation.created_at.asc())
        .first()
    )


def get_or_create_conversation(db: Session, user_id: str) -> Conversation:
    """Return the user's conversation, creating it on first contact.

    ``conversations.user_id`` is unique, so two first contacts racing each
    other cannot split the history: the loser's insert fails and it re-reads
    the winner's row.
    """
    conversation = _find_for_user(db, user_id)
    if conversation is not None:
        return conversation

    conversation = Conversation(
        user_id=user_id,
        last_message_snippet="",
        user_unread_count=0,
        admin_unread_count=0,
    )
    db.add(conversation)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("get_or_create_conversation: lost creation race for user %s", user_id)
        conversation = _find_for_user(db, user_id)
        if conversation is None:
            raise
        return conversation

    db.refresh(conversation)
    logger.info("created conversation %s for user %s", conversation.id, user_id)
    return conversation


def get_conversation(db: Session, conversation_id: str | None) -> Conversation:
    conversation_id = _validate_id(conversation_id)
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation is None:
        raise NotFoundError("Conversation not found")
    return conversation


def authorize(conversation: Conversation, principal: Principal) -> None:
    """Admins may touch any conversation; users only their own."""
    if principal.is_admin:
        return
    if conversation.user_id != principal.user_id:
        raise AuthorizationError("Forbidden")


def get_conversation_for(db: Session, conversation_id: str | None, principal: Principal) -> Conversation:
    conversation = get_conversation(db, conversation_id)
    authorize(conversation, principal)
    return conversation


def list_messages(db: Session, conversation_id: str, limit: int = 50) -> list[Message]:
    """Most recent ``limit`` messages, oldest first."""
    recent = (
        db.query(Message)
        .filter(Message.conversation_id == conversation_id)
        .order_by(Message.created_at.desc())
        .limit(limit)
        .all()
    )
    recent.reverse()
    return recent


def list_conversations(db: Session, principal: Principal) -> list[Conversation]:
    if not principal.is_admin:
        return (
            db.query(Conversation)
            .filter(Conversation.user_id == principal.user_id)
            .order_by(Conversation.updated_at.desc())
            .all()
        )

    rows = (
        db.query(Conversation)
        .options(joinedload(Conversation.user))
        .order_by(Conversation.updated_at.desc())
        .all()
    )
    # Rows are newest-updated first, so the first row seen per user wins.
    by_user: dict[str, Conversation] = {}
    for conv in rows:
        by_user.setdefault(conv.user_id, conv)
    return sorted(by_user.values(), key=lambda c: c.last_message_at, reverse=True)


def unread_total(db: Session, principal: Principal) -> int:
    if principal.is_admin:
        total = db.query(func.coalesce(func.sum(Conversation.admin_unread_count), 0)).scalar()
    else:
        total = (
            db.query(func.coalesce(func.sum(Conversation.user_unread_count), 0))
            .filter(Conversation.user_id == principal.user_id)
            .scalar()
        )
    return int(total or 0)
