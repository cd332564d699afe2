from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_principal
from app.config import settings
from app.database import get_db
from app.models.user import User
from app.schemas.conversations import (
    ConversationDetailSchema,
    ConversationListResponseSchema,
    ConversationSchema,
)
from app.schemas.messages import MessageSchema
from app.services import conversation_service
from app.services.principal import Principal

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationSchema)
def open_conversation(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Get or lazily create the calling customer's conversation."""
    if not principal.user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    user = db.query(User).filter(User.id == principal.user_id).first()
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    return conversation_service.get_or_create_conversation(db, user.id)


@router.get("", response_model=ConversationListResponseSchema)
def list_conversations(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    """Admin: one conversation per customer, latest activity first. User: their own."""
    conversations = conversation_service.list_conversations(db, principal)
    return ConversationListResponseSchema(
        conversations=[ConversationSchema.model_validate(c) for c in conversations]
    )


@router.get("/{conversation_id}", response_model=ConversationDetailSchema)
def get_conversation(
    conversation_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    conversation = conversation_service.get_conversation_for(db, conversation_id, principal)
    messages = conversation_service.list_messages(
        db, conversation.id, limit=settings.MESSAGE_PAGE_SIZE
    )
    return ConversationDetailSchema(
        **ConversationSchema.model_validate(conversation).model_dump(),
        messages=[MessageSchema.model_validate(m) for m in messages],
    )
