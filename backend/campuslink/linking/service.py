"""
Linking state machine.

    NotLinked → Linking → Linked | Error | NotLinked (rejected or denied)
    Linked    → NotLinked (unlink) | Expired (stored credentials unusable)

This class is the only writer of ``users.linked_status``. Browser and
vault failures are translated into ``LinkingError`` subclasses here; raw
third-party error text is logged and never returned.

A second ``initiate`` for a user who already has a live pending session
(or an initiate still in flight) is rejected with
``LinkingInProgressError``. A ``Linking`` status left behind without a
live session may be restarted.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from ..automation.base import DriverFactory
from ..automation.outcomes import ApprovalResult, LoginResult
from ..config import LinkConfig
from ..credentials import Credentials
from ..db import PERSISTENCE_ERRORS, LinkedAccountStatus, LinkedUser, UserRepository
from ..db.models import utcnow
from ..errors import (
    AlreadyLinkedError,
    InternalAutomationError,
    LinkingError,
    LinkingInProgressError,
    SessionOwnershipError,
    UserNotFoundError,
)
from ..logging import get_logger, mask_identifier
from ..vault import CredentialVault
from .registry import PendingSession, SessionRegistry
from .results import ApprovalCheckResult, InitiateResult
from .status import LinkStatusView

logger = get_logger("linking")


class LinkingService:
    """Drives account linking for all users of this process."""

    def __init__(
        self,
        vault: CredentialVault,
        users: UserRepository,
        registry: SessionRegistry,
        driver_factory: DriverFactory,
        config: LinkConfig,
    ):
        self.vault = vault
        self.users = users
        self.registry = registry
        self.driver_factory = driver_factory
        self.config = config

        self._initiating: set[str] = set()
        self._initiate_lock = asyncio.Lock()
        self.registry.on_expire = self._on_session_expired

    # ── Status writes ─────────────────────────────────────────────

    async def _set_status(
        self,
        user_id: str,
        status: LinkedAccountStatus,
        email: Optional[str] = None,
        linked_at: Optional[datetime] = None,
        last_sync: Optional[datetime] = None,
    ) -> None:
        try:
            await self.users.update_link_status(
                user_id, status, email=email, linked_at=linked_at, last_sync=last_sync
            )
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to set link status {status.value} for user {user_id}: {e}")
            raise LinkingError("failed to update link status") from e
        logger.info(f"User {user_id} link status -> {status.value}")

    async def _force_error(self, user_id: str) -> None:
        """Move to Error on an aborted attempt. Failures here are only logged."""
        try:
            await self._set_status(user_id, LinkedAccountStatus.ERROR)
        except LinkingError as e:
            logger.error(f"Could not record error status for user {user_id}: {e}")

    async def _require_user(self, user_id: str) -> LinkedUser:
        try:
            user = await self.users.find_by_id(user_id)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to load user {user_id}: {e}")
            raise LinkingError("failed to load user") from e
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        return user

    async def _finalize(self, user_id: str, creds: Credentials) -> datetime:
        """Persist verified credentials and mark the user Linked."""
        await self.vault.store(user_id, creds.username, creds.password)
        now = utcnow()
        await self._set_status(
            user_id,
            LinkedAccountStatus.LINKED,
            email=creds.username,
            linked_at=now,
            last_sync=now,
        )
        return now

    # ── Initiate ──────────────────────────────────────────────────

    async def initiate(self, user_id: str, username: str, password: str) -> InitiateResult:
        """Submit the login and either link, issue a challenge, or fail.

        Raises:
            ValidationError: blank or malformed credentials.
            AlreadyLinkedError: the user must unlink first.
            LinkingInProgressError: another attempt is live for this user.
            InternalAutomationError: the browser failed (status becomes Error).
        """
        creds = Credentials.parse(username, password)

        user = await self._require_user(user_id)
        if user.linked_status == LinkedAccountStatus.LINKED:
            raise AlreadyLinkedError(f"user {user_id} is already linked")

        async with self._initiate_lock:
            if user_id in self._initiating or await self.registry.find_by_user(user_id):
                raise LinkingInProgressError(f"linking already in progress for user {user_id}")
            self._initiating.add(user_id)

        try:
            return await self._run_initiate(user_id, creds)
        finally:
            async with self._initiate_lock:
                self._initiating.discard(user_id)

    async def _run_initiate(self, user_id: str, creds: Credentials) -> InitiateResult:
        logger.info(f"Linking started for user {user_id} ({mask_identifier(creds.username)})")
        await self._set_status(user_id, LinkedAccountStatus.LINKING)

        driver = None
        try:
            driver = await self.driver_factory()
            outcome = await driver.login(creds)

            if outcome.kind == LoginResult.SUCCESS:
                linked_at = await self._finalize(user_id, creds)
                logger.info(f"User {user_id} linked without MFA")
                return InitiateResult.linked(creds.username.lower(), linked_at)

            if outcome.kind == LoginResult.CHALLENGE:
                session_id = self.registry.new_session_id()
                await self.registry.create(session_id, driver, user_id, creds)
                driver = None
                logger.info(f"MFA challenge issued for user {user_id}")
                return InitiateResult.challenge(session_id, outcome.match_code)

            await self._set_status(user_id, LinkedAccountStatus.NOT_LINKED)
            logger.info(f"Login rejected for user {user_id}: {outcome.reason}")
            return InitiateResult.failed(outcome.reason)

        except LinkingError:
            await self._force_error(user_id)
            raise
        except Exception as e:
            logger.error(f"Unexpected linking error for user {user_id}: {type(e).__name__}: {e}")
            await self._force_error(user_id)
            raise InternalAutomationError("unexpected error during login") from e
        finally:
            if driver is not None:
                await driver.cleanup()

    # ── Approval polling ──────────────────────────────────────────

    async def check_approval(self, user_id: str, session_id: str) -> ApprovalCheckResult:
        """Wait briefly for the push approval and finalize if it arrived.

        Unknown or expired sessions return ``requires_restart``. A session
        owned by another user raises ``SessionOwnershipError``.
        """
        entry = await self.registry.get(session_id)
        if entry is None:
            await self._abandon_if_stuck(user_id)
            return ApprovalCheckResult.requires_restart()

        self._check_owner(entry, user_id)

        async with entry.lock:
            if entry.terminal is not None:
                return entry.terminal
            if entry.released:
                return ApprovalCheckResult.requires_restart()

            wait_ms = int(self.config.approval_wait_seconds * 1000)
            try:
                outcome = await entry.driver.wait_for_approval_and_complete(wait_ms)
            except Exception as e:
                if entry.released:
                    # Unlink or shutdown took the session; they own the status
                    logger.info(f"Approval poll for user {user_id} ended by session removal")
                    return ApprovalCheckResult.requires_restart()
                logger.error(f"Approval check failed for user {user_id}: {type(e).__name__}: {e}")
                await self._force_error(user_id)
                await self.registry.remove(session_id)
                if isinstance(e, LinkingError):
                    raise
                raise InternalAutomationError("unexpected error during approval") from e

            # Evicted while the browser was polled
            if entry.released:
                return ApprovalCheckResult.requires_restart()

            if outcome.kind == ApprovalResult.PENDING:
                return ApprovalCheckResult.waiting()

            if outcome.kind == ApprovalResult.DENIED:
                await self.registry.remove(session_id)
                await self._set_status(user_id, LinkedAccountStatus.NOT_LINKED)
                logger.info(f"Push request denied for user {user_id}: {outcome.reason}")
                return ApprovalCheckResult.denied(outcome.reason)

            return await self._complete_approval(entry, user_id)

    def _check_owner(self, entry: PendingSession, user_id: str) -> None:
        if entry.user_id != user_id:
            logger.warning(
                f"SECURITY: user {user_id} presented a session owned by user {entry.user_id}"
            )
            raise SessionOwnershipError("session belongs to another user")

    async def _complete_approval(self, entry: PendingSession, user_id: str) -> ApprovalCheckResult:
        # Caller holds entry.lock
        self._check_owner(entry, user_id)
        creds = entry.credentials
        try:
            linked_at = await self._finalize(user_id, creds)
        except LinkingError:
            await self._force_error(user_id)
            await self.registry.remove(entry.session_id)
            raise

        result = ApprovalCheckResult.linked(creds.username.lower(), linked_at)
        entry.terminal = result
        entry.credentials = None
        await entry.driver.cleanup()
        await self.registry.retire(entry.session_id, self.config.finalize_grace_seconds)
        logger.info(f"User {user_id} linked after MFA approval")
        return result

    async def _abandon_if_stuck(self, user_id: str) -> None:
        """Move a user stuck in Linking with no live attempt to Error."""
        try:
            user = await self.users.find_by_id(user_id)
            if user is None or user.linked_status != LinkedAccountStatus.LINKING:
                return
            if user_id in self._initiating or await self.registry.find_by_user(user_id):
                return
            await self._set_status(user_id, LinkedAccountStatus.ERROR)
        except (LinkingError, *PERSISTENCE_ERRORS) as e:
            logger.error(f"Could not reset stale linking state for user {user_id}: {e}")

    async def _on_session_expired(self, entry: PendingSession) -> None:
        await self._abandon_if_stuck(entry.user_id)

    # ── Unlink / status ───────────────────────────────────────────

    async def unlink(self, user_id: str) -> datetime:
        """Forget the linked account. Safe to repeat."""
        await self._require_user(user_id)

        # Waits for an in-flight poll, so a finalize cannot land after the delete
        pending = await self.registry.find_by_user(user_id)
        if pending is not None:
            await self.registry.evict(pending.session_id)

        await self.vault.delete(user_id)
        await self._set_status(user_id, LinkedAccountStatus.NOT_LINKED)
        return utcnow()

    async def get_status(self, user_id: str) -> LinkStatusView:
        user = await self._require_user(user_id)
        has_credentials = await self.vault.has_credentials(user_id)
        pending = await self.registry.find_by_user(user_id)
        return LinkStatusView.from_user(
            user,
            has_stored_credentials=has_credentials,
            pending_session=pending is not None,
        )

    async def verify_stored_credentials(self, user_id: str) -> bool:
        """Check that the stored credentials still decrypt.

        A Linked user whose credentials are gone or undecryptable (e.g.
        after the server secret changed) becomes Expired.
        """
        user = await self._require_user(user_id)
        usable = await self.vault.validate_credentials(user_id)
        if not usable and user.linked_status == LinkedAccountStatus.LINKED:
            logger.warning(f"Stored credentials for user {user_id} are unusable")
            await self._set_status(user_id, LinkedAccountStatus.EXPIRED)
        return usable

    async def shutdown(self) -> None:
        await self.registry.close_all()
