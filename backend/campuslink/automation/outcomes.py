"""Tagged results returned by automation drivers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class LoginResult(str, Enum):
    SUCCESS = "success"        # Signed in without MFA
    CHALLENGE = "challenge"    # Push notification sent, waiting for approval
    FAILED = "failed"


class ApprovalResult(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"
    DENIED = "denied"


@dataclass(frozen=True)
class SessionData:
    """Cookies and user agent of an authenticated portal session."""
    cookies: list[dict[str, Any]] = field(default_factory=list, repr=False)
    user_agent: str = ""


@dataclass(frozen=True)
class LoginOutcome:
    kind: LoginResult
    match_code: Optional[str] = None
    reason: Optional[str] = None
    session: Optional[SessionData] = None

    @classmethod
    def success(cls, session: Optional[SessionData] = None) -> "LoginOutcome":
        return cls(LoginResult.SUCCESS, session=session)

    @classmethod
    def challenge(cls, match_code: Optional[str] = None) -> "LoginOutcome":
        return cls(LoginResult.CHALLENGE, match_code=match_code)

    @classmethod
    def failed(cls, reason: str) -> "LoginOutcome":
        return cls(LoginResult.FAILED, reason=reason)


@dataclass(frozen=True)
class ApprovalOutcome:
    kind: ApprovalResult
    reason: Optional[str] = None
    session: Optional[SessionData] = None

    @classmethod
    def approved(cls, session: Optional[SessionData] = None) -> "ApprovalOutcome":
        return cls(ApprovalResult.APPROVED, session=session)

    @classmethod
    def pending(cls) -> "ApprovalOutcome":
        return cls(ApprovalResult.PENDING)

    @classmethod
    def denied(cls, reason: str) -> "ApprovalOutcome":
        return cls(ApprovalResult.DENIED, reason=reason)
