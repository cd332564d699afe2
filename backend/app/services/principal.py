from __future__ import annotations

import dataclasses

from app.models.message import SenderRole


@dataclasses.dataclass(frozen=True)
class Principal:
    """Caller identity as handed over by the auth layer."""

    user_id: str | None
    is_admin: bool = False

    @property
    def role(self) -> SenderRole:
        return SenderRole.ADMIN if self.is_admin else SenderRole.USER
