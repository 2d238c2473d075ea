"""Error taxonomy for account linking.

Every error carries a ``public_message`` that is safe to show to the end
user and an HTTP status hint for the API layer. Raw third-party error text
stays in the logs and never ends up in ``public_message``.

Rejected logins, denied approvals and unknown sessions are returned by the
service as result values; ``InitiateResult.error()`` and
``ApprovalCheckResult.error()`` map them onto ``AutomationFailure``,
``ChallengeTimeoutOrDenied`` and ``SessionNotFoundError`` for the API.
"""


class LinkingError(Exception):
    """Base class for all linking errors."""

    status_code = 500
    public_message = "Account linking failed"

    def __init__(self, message: str | None = None, *, public_message: str | None = None):
        super().__init__(message or self.public_message)
        if public_message:
            self.public_message = public_message


class ConfigError(LinkingError):
    """Server configuration is missing or unsafe."""
    public_message = "Account linking is not configured"


class ValidationError(LinkingError):
    """Missing or malformed credentials. Never reaches the browser."""
    status_code = 422
    public_message = "Username and password are required"


class AlreadyLinkedError(LinkingError):
    status_code = 409
    public_message = "A Penn State account is already linked. Please unlink it first."


class LinkingInProgressError(LinkingError):
    status_code = 409
    public_message = "Account linking is already in progress"


class AutomationFailure(LinkingError):
    """The third-party login was rejected or the page could not be classified."""
    status_code = 401
    public_message = "Penn State login failed"


class ChallengeTimeoutOrDenied(LinkingError):
    status_code = 401
    public_message = "Sign-in request was denied or timed out"


class SessionNotFoundError(LinkingError):
    status_code = 404
    public_message = "Authentication session not found or expired. Please restart the login process."


class SessionOwnershipError(LinkingError):
    """The session id is valid but belongs to another user."""
    status_code = 403
    public_message = "Authentication session does not belong to this user"


class IntegrityError(LinkingError):
    """Stored ciphertext was produced with a different key."""
    status_code = 409
    public_message = "Stored credentials can no longer be decrypted"


class VaultError(LinkingError):
    public_message = "Failed to access stored credentials"


class InternalAutomationError(LinkingError):
    """The browser crashed or the page had an unexpected structure."""
    status_code = 502
    public_message = "Penn State authentication service temporarily unavailable"


class UserNotFoundError(LinkingError):
    status_code = 404
    public_message = "User not found"
