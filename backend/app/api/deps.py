from __future__ import annotations

import hmac

from fastapi import Header, HTTPException, status

from app.config import settings
from app.services.principal import Principal


def get_principal(
    x_user_id: str | None = Header(default=None),
    x_admin_key: str | None = Header(default=None),
) -> Principal:
    """Resolve the caller from headers set by the upstream auth layer."""
    if x_admin_key is not None:
        if not hmac.compare_digest(x_admin_key, settings.ADMIN_API_KEY):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid X-Admin-Key header",
            )
        return Principal(user_id=x_user_id, is_admin=True)

    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return Principal(user_id=x_user_id, is_admin=False)
