from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_principal
from app.database import get_db
from app.schemas.messages import (
    MarkReadResponseSchema,
    MarkReadSchema,
    MessageCreateSchema,
    MessageSchema,
)
from app.services import conversation_service, message_service
from app.services.principal import Principal
from app.services.rate_limiter import RateLimiter, get_rate_limiter
from app.services.realtime import Publisher, get_publisher

router = APIRouter(prefix="/messages", tags=["messages"])


@router.post("", response_model=MessageSchema)
def create_message(
    body: MessageCreateSchema,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    publisher: Publisher = Depends(get_publisher),
):
    return message_service.send_message(
        db, principal, body, rate_limiter=rate_limiter, publisher=publisher
    )


@router.patch("/read", response_model=MarkReadResponseSchema)
def mark_messages_read(
    body: MarkReadSchema,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Mark everything the other party sent as read, for the caller's role."""
    conversation = conversation_service.get_conversation_for(db, body.conversation_id, principal)
    marked = message_service.mark_read(db, conversation.id, principal.role)
    return MarkReadResponseSchema(
        message="Messages marked as read",
        conversation_id=conversation.id,
        marked=marked,
    )
