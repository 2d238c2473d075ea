"""Account linking: pending session registry and the linking state machine."""

from .registry import PendingSession, SessionRegistry
from .results import (
    ApprovalCheckResult,
    ApprovalStatus,
    InitiateResult,
    InitiateStatus,
    failure_message,
)
from .service import LinkingService
from .status import LinkStatusView

__all__ = [
    'PendingSession',
    'SessionRegistry',
    'ApprovalCheckResult',
    'ApprovalStatus',
    'InitiateResult',
    'InitiateStatus',
    'failure_message',
    'LinkingService',
    'LinkStatusView',
]
