"""Results returned by the linking state machine to its callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..automation.classifier import (
    REASON_BAD_CREDENTIALS,
    REASON_DENIED,
    REASON_LOGIN_FORM_PRESENT,
    REASON_UNREACHABLE,
    REASON_UNRECOGNIZED,
    REASON_UNSUPPORTED_MFA,
)
from ..errors import AutomationFailure, ChallengeTimeoutOrDenied, LinkingError, SessionNotFoundError

# User-facing text per failure reason code
FAILURE_MESSAGES: dict[str, str] = {
    REASON_BAD_CREDENTIALS: "Invalid Penn State credentials",
    REASON_DENIED: "Sign-in request was denied",
    REASON_UNSUPPORTED_MFA: "Only Microsoft Authenticator push approval is supported",
    REASON_LOGIN_FORM_PRESENT: "Penn State login did not complete. Please check your credentials.",
    REASON_UNRECOGNIZED: "Could not confirm Penn State login. Please try again.",
    REASON_UNREACHABLE: "Penn State login page is unreachable. Please try again later.",
}
DEFAULT_FAILURE_MESSAGE = "Penn State login failed"


def failure_message(reason: Optional[str]) -> str:
    return FAILURE_MESSAGES.get(reason or "", DEFAULT_FAILURE_MESSAGE)


class InitiateStatus(str, Enum):
    LINKED = "linked"
    CHALLENGE = "challenge"
    FAILED = "failed"


class ApprovalStatus(str, Enum):
    LINKED = "linked"
    WAITING = "waiting"
    REQUIRES_RESTART = "requires_restart"
    DENIED = "denied"


@dataclass(frozen=True)
class InitiateResult:
    status: InitiateStatus
    session_id: Optional[str] = None
    match_code: Optional[str] = None
    reason: Optional[str] = None
    linked_email: Optional[str] = None
    linked_at: Optional[datetime] = None

    @classmethod
    def linked(cls, email: str, linked_at: datetime) -> "InitiateResult":
        return cls(InitiateStatus.LINKED, linked_email=email, linked_at=linked_at)

    @classmethod
    def challenge(cls, session_id: str, match_code: Optional[str]) -> "InitiateResult":
        return cls(InitiateStatus.CHALLENGE, session_id=session_id, match_code=match_code)

    @classmethod
    def failed(cls, reason: Optional[str]) -> "InitiateResult":
        return cls(InitiateStatus.FAILED, reason=reason)

    @property
    def message(self) -> str:
        if self.status == InitiateStatus.LINKED:
            return "Penn State account linked successfully"
        if self.status == InitiateStatus.CHALLENGE:
            if self.match_code:
                return f"Enter {self.match_code} in Microsoft Authenticator to approve the sign-in"
            return "Approve the sign-in request in Microsoft Authenticator"
        return failure_message(self.reason)

    def error(self) -> Optional[LinkingError]:
        """The error a rejected login maps to, or None."""
        if self.status != InitiateStatus.FAILED:
            return None
        return AutomationFailure(f"login failed: {self.reason}", public_message=self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "session_id": self.session_id,
            "match_code": self.match_code,
            "reason": self.reason,
            "linked_email": self.linked_email,
            "linked_at": self.linked_at.isoformat() if self.linked_at else None,
        }


@dataclass(frozen=True)
class ApprovalCheckResult:
    status: ApprovalStatus
    reason: Optional[str] = None
    linked_email: Optional[str] = None
    linked_at: Optional[datetime] = None

    @classmethod
    def linked(cls, email: str, linked_at: datetime) -> "ApprovalCheckResult":
        return cls(ApprovalStatus.LINKED, linked_email=email, linked_at=linked_at)

    @classmethod
    def waiting(cls) -> "ApprovalCheckResult":
        return cls(ApprovalStatus.WAITING)

    @classmethod
    def requires_restart(cls) -> "ApprovalCheckResult":
        return cls(ApprovalStatus.REQUIRES_RESTART)

    @classmethod
    def denied(cls, reason: Optional[str]) -> "ApprovalCheckResult":
        return cls(ApprovalStatus.DENIED, reason=reason)

    @property
    def message(self) -> str:
        if self.status == ApprovalStatus.LINKED:
            return "Penn State account linked successfully"
        if self.status == ApprovalStatus.WAITING:
            return "Waiting for approval in Microsoft Authenticator"
        if self.status == ApprovalStatus.REQUIRES_RESTART:
            return SessionNotFoundError.public_message
        return failure_message(self.reason)

    def error(self) -> Optional[LinkingError]:
        if self.status == ApprovalStatus.DENIED:
            return ChallengeTimeoutOrDenied(
                f"approval denied: {self.reason}", public_message=self.message
            )
        if self.status == ApprovalStatus.REQUIRES_RESTART:
            return SessionNotFoundError("session unknown or expired")
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "reason": self.reason,
            "linked_email": self.linked_email,
            "linked_at": self.linked_at.isoformat() if self.linked_at else None,
        }
