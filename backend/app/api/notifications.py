from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_principal
from app.database import get_db
from app.schemas.conversations import UnreadCountSchema
from app.services.conversation_service import unread_total
from app.services.principal import Principal

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/unread-count", response_model=UnreadCountSchema)
def unread_count(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
):
    return UnreadCountSchema(
        unread_count=unread_total(db, principal),
        role=principal.role.value,
    )
