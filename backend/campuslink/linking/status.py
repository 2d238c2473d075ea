"""Read-only projection of a user's link state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..db.models import LinkedAccountStatus, LinkedUser


@dataclass(frozen=True)
class LinkStatusView:
    status: LinkedAccountStatus
    linked_email: Optional[str] = None
    linked_at: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    has_stored_credentials: bool = False
    pending_session: bool = False

    @property
    def is_linked(self) -> bool:
        return self.status == LinkedAccountStatus.LINKED

    @classmethod
    def from_user(
        cls,
        user: LinkedUser,
        has_stored_credentials: bool = False,
        pending_session: bool = False,
    ) -> "LinkStatusView":
        return cls(
            status=user.linked_status,
            linked_email=user.linked_email,
            linked_at=user.linked_at,
            last_sync=user.last_sync,
            has_stored_credentials=has_stored_credentials,
            pending_session=pending_session,
        )

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "is_linked": self.is_linked,
            "linked_email": self.linked_email,
            "linked_at": self.linked_at.isoformat() if self.linked_at else None,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "has_stored_credentials": self.has_stored_credentials,
            "pending_session": self.pending_session,
        }
