"""Browser automation for the Penn State login flow."""

from .base import AutomationDriver, DriverFactory
from .outcomes import ApprovalOutcome, ApprovalResult, LoginOutcome, LoginResult, SessionData
from .classifier import PageSnapshot, classify_login, classify_approval, extract_match_code

__all__ = [
    'AutomationDriver',
    'DriverFactory',
    'ApprovalOutcome',
    'ApprovalResult',
    'LoginOutcome',
    'LoginResult',
    'SessionData',
    'PageSnapshot',
    'classify_login',
    'classify_approval',
    'extract_match_code',
]
