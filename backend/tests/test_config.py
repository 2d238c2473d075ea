"""
Tests for configuration, credential parsing and log masking.
"""

import pytest

from campuslink.config import MAX_APPROVAL_WAIT_SECONDS, LinkConfig
from campuslink.credentials import Credentials
from campuslink.errors import ConfigError, ValidationError
from campuslink.logging import get_log_dir, get_logger, get_recent_logs, mask_identifier, setup_logging


class TestLinkConfig:
    def test_env_defaults(self, monkeypatch):
        monkeypatch.setenv("CAMPUSLINK_CREDENTIAL_SECRET", "x" * 40)
        monkeypatch.setenv("CAMPUSLINK_SESSION_TTL_SECONDS", "120")
        monkeypatch.setenv("CAMPUSLINK_HEADLESS", "false")

        config = LinkConfig()
        assert config.credential_secret == "x" * 40
        assert config.session_ttl_seconds == 120.0
        assert config.headless is False

    def test_explicit_args_win(self, monkeypatch):
        monkeypatch.setenv("CAMPUSLINK_CREDENTIAL_SECRET", "from-env")
        assert LinkConfig(credential_secret="explicit").credential_secret == "explicit"

    def test_approval_wait_is_capped(self):
        config = LinkConfig(credential_secret="x" * 40, approval_wait_seconds=30)
        assert config.approval_wait_seconds == MAX_APPROVAL_WAIT_SECONDS

    def test_missing_secret_rejected(self, monkeypatch):
        monkeypatch.delenv("CAMPUSLINK_CREDENTIAL_SECRET", raising=False)
        with pytest.raises(ConfigError):
            LinkConfig().validate()

    def test_secret_must_differ_from_token_secret(self):
        with pytest.raises(ConfigError):
            LinkConfig(credential_secret="same" * 10, token_secret="same" * 10).validate()

    def test_short_secret_rejected_in_production(self):
        with pytest.raises(ConfigError):
            LinkConfig(credential_secret="short", environment="production").validate()
        LinkConfig(credential_secret="short", environment="development").validate()


class TestCredentials:
    def test_parse_strips_username(self):
        creds = Credentials.parse("  alice@psu.edu ", "p@ss")
        assert creds.username == "alice@psu.edu"
        assert creds.is_complete

    def test_password_not_in_repr(self):
        assert "p@ss" not in repr(Credentials.parse("alice@psu.edu", "p@ss"))

    @pytest.mark.parametrize("username,password", [(None, "x"), ("alice@psu.edu", None), ("   ", "x")])
    def test_blank_values_rejected(self, username, password):
        with pytest.raises(ValidationError):
            Credentials.parse(username, password)

    def test_username_must_be_email(self):
        with pytest.raises(ValidationError) as exc_info:
            Credentials.parse("alice", "x")
        assert exc_info.value.public_message == "Please enter your Penn State email address"


class TestMaskIdentifier:
    def test_masks_local_part(self):
        masked = mask_identifier("alice@psu.edu")
        assert masked.endswith("@psu.edu")
        assert "alice" not in masked

    def test_empty(self):
        assert mask_identifier("") == "<empty>"


class TestLogging:
    def test_file_log_captures_existing_loggers_and_redacts(self, tmp_path):
        logger = get_logger("vault")
        log_dir = setup_logging(str(tmp_path))

        logger.info("retry with password=hunter2 failed")

        assert get_log_dir() == tmp_path
        lines = "".join(get_recent_logs(10))
        assert "[CAMPUSLINK.vault]" in lines
        assert "hunter2" not in lines
        assert "password=[REDACTED]" in lines
        assert any(p.name.startswith("campuslink_") for p in log_dir.iterdir())
