"""Linking service configuration with explicit args > env var > defaults precedence."""

import os
from dataclasses import dataclass, field

from .errors import ConfigError

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/125 Safari/537.36"
)

# Upper bound for a single approval poll so request handlers return promptly
MAX_APPROVAL_WAIT_SECONDS = 5.0


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class LinkConfig:
    """Configuration for the linking service."""
    credential_secret: str = ""
    token_secret: str = ""
    environment: str = ""

    # Pending session lifecycle
    session_ttl_seconds: float = 600.0
    approval_wait_seconds: float = MAX_APPROVAL_WAIT_SECONDS
    finalize_grace_seconds: float = 5.0
    sweep_interval_seconds: float = 30.0

    # Browser automation
    headless: bool = True
    login_url: str = "https://login.microsoftonline.com/"
    portal_urls: list[str] = field(default_factory=lambda: [
        "https://psu-sp.transactcampus.com/PSU/AccountSummary.aspx",
        "https://psu-sp.transactcampus.com/PSU/AccountTransaction.aspx",
    ])
    navigation_timeout_ms: int = 45_000
    user_agent: str = DEFAULT_USER_AGENT

    log_dir: str = ""

    def __post_init__(self):
        # Apply env var defaults before explicit overrides
        if not self.credential_secret:
            self.credential_secret = os.getenv("CAMPUSLINK_CREDENTIAL_SECRET", "")
        if not self.token_secret:
            self.token_secret = os.getenv("JWT_SECRET", "")
        if not self.environment:
            self.environment = os.getenv("CAMPUSLINK_ENV", "development")
        if self.session_ttl_seconds == 600.0:
            env_ttl = os.getenv("CAMPUSLINK_SESSION_TTL_SECONDS")
            if env_ttl:
                self.session_ttl_seconds = float(env_ttl)
        if self.headless:
            self.headless = _env_bool("CAMPUSLINK_HEADLESS", True)
        if not self.log_dir:
            self.log_dir = os.getenv("CAMPUSLINK_LOG_DIR", "")

        self.approval_wait_seconds = min(
            max(self.approval_wait_seconds, 0.0), MAX_APPROVAL_WAIT_SECONDS
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> None:
        """Reject secrets that would make the vault unsafe."""
        if not self.credential_secret:
            raise ConfigError("CAMPUSLINK_CREDENTIAL_SECRET is not set")
        if self.token_secret and self.credential_secret == self.token_secret:
            raise ConfigError(
                "CAMPUSLINK_CREDENTIAL_SECRET must differ from JWT_SECRET"
            )
        if self.is_production and len(self.credential_secret) < 32:
            raise ConfigError(
                "CAMPUSLINK_CREDENTIAL_SECRET must be at least 32 characters in production"
            )
