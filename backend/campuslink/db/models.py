"""Database models for CampusLink."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LinkedAccountStatus(str, Enum):
    """Link status of a user's Penn State account."""
    NOT_LINKED = "not_linked"
    LINKING = "linking"          # Login submitted, waiting on MFA or the browser
    LINKED = "linked"
    ERROR = "error"              # Attempt aborted, flow cannot resume
    EXPIRED = "expired"          # Stored credentials no longer usable


@dataclass
class LinkedUser:
    """The slice of a user record that the linking flow reads and writes."""
    id: str
    email: Optional[str] = None
    linked_status: LinkedAccountStatus = LinkedAccountStatus.NOT_LINKED
    linked_email: Optional[str] = None
    linked_at: Optional[datetime] = None
    last_sync: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "email": self.email,
            "linked_status": self.linked_status.value,
            "linked_email": self.linked_email,
            "linked_at": self.linked_at.isoformat() if self.linked_at else None,
            "last_sync": self.last_sync.isoformat() if self.last_sync else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class CredentialRecord:
    """Encrypted third-party credentials, one row per user."""
    user_id: str
    encrypted_username: str
    encrypted_password: str
    key_fingerprint: str
    id: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary without the ciphertext."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "key_fingerprint": self.key_fingerprint,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
