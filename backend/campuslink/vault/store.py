"""
Credential vault: per-user encrypted storage of Penn State credentials.

The encryption key is derived from the server secret and the user id on
every call. Nothing here keeps a key or a plaintext around after the call
returns.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from cryptography.exceptions import InvalidTag

from ..credentials import Credentials
from ..db import PERSISTENCE_ERRORS, CredentialRecord, CredentialRepository
from ..errors import IntegrityError, ValidationError, VaultError
from ..logging import get_logger
from .crypto import decrypt, derive_key, encrypt, key_fingerprint

logger = get_logger("vault")


class CredentialVault:
    """Encrypts, persists and decrypts linked-account credentials."""

    def __init__(
        self,
        secret_provider: Callable[[], str],
        repository: Optional[CredentialRepository] = None,
    ):
        """
        Args:
            secret_provider: Returns the current server-held credential secret.
                Called on every operation so a rotated secret takes effect
                immediately.
            repository: Persistence backend (defaults to Postgres).
        """
        self._secret_provider = secret_provider
        self.repository = repository or CredentialRepository()

    async def derive_key(self, user_id: str) -> bytes:
        """Derive the user's key off the event loop (PBKDF2 is CPU bound)."""
        secret = self._secret_provider()
        if not secret:
            raise VaultError("credential secret is not configured")
        return await asyncio.to_thread(derive_key, secret, user_id)

    async def store(self, user_id: str, username: str, password: str) -> CredentialRecord:
        """Encrypt and upsert credentials for a user."""
        if not user_id or not username or not password:
            raise ValidationError("user_id, username and password are required")

        key = await self.derive_key(user_id)
        try:
            encrypted_username = encrypt(key, username)
            encrypted_password = encrypt(key, password)
        except (ValueError, TypeError) as e:
            logger.error(f"Encryption failed for user {user_id}: {type(e).__name__}")
            raise VaultError("encryption failed") from e

        try:
            record = await self.repository.upsert(
                user_id,
                encrypted_username,
                encrypted_password,
                key_fingerprint(key),
            )
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to store credentials for user {user_id}: {e}")
            raise VaultError("failed to store credentials") from e

        logger.info(f"Credentials stored for user {user_id}")
        return record

    async def update(self, user_id: str, username: str, password: str) -> CredentialRecord:
        """Replace stored credentials (store() already upserts)."""
        return await self.store(user_id, username, password)

    async def retrieve(self, user_id: str) -> Optional[Credentials]:
        """Decrypt the stored credentials, or return None if there are none.

        Raises:
            IntegrityError: the record was written under a different key
                (e.g. the server secret was rotated) or was tampered with.
            VaultError: the database could not be read.
        """
        try:
            record = await self.repository.fetch(user_id)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to read credentials for user {user_id}: {e}")
            raise VaultError("failed to read credentials") from e

        if record is None:
            return None

        key = await self.derive_key(user_id)
        # Check the fingerprint before decrypting so a rotated secret is
        # reported as such instead of surfacing as a generic cipher error
        if record.key_fingerprint != key_fingerprint(key):
            logger.error(f"Encryption key mismatch for user {user_id}")
            raise IntegrityError("credential key fingerprint mismatch")

        try:
            username = decrypt(key, record.encrypted_username)
            password = decrypt(key, record.encrypted_password)
        except (InvalidTag, ValueError) as e:
            logger.error(f"Credential decryption failed for user {user_id}: {type(e).__name__}")
            raise IntegrityError("credential ciphertext failed authentication") from e

        return Credentials(username=username, password=password)

    async def has_credentials(self, user_id: str) -> bool:
        try:
            return await self.repository.exists(user_id)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to check credentials for user {user_id}: {e}")
            raise VaultError("failed to check credentials") from e

    async def delete(self, user_id: str) -> bool:
        """Delete stored credentials. Returns False if there were none."""
        try:
            deleted = await self.repository.delete(user_id)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to delete credentials for user {user_id}: {e}")
            raise VaultError("failed to delete credentials") from e

        if deleted:
            logger.info(f"Credentials deleted for user {user_id}")
        return deleted

    async def cleanup_older_than(self, days: int = 30) -> int:
        """Remove records not updated in *days* days. Returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        try:
            count = await self.repository.delete_older_than(cutoff)
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Credential cleanup failed: {e}")
            raise VaultError("failed to clean up credentials") from e

        logger.info(f"Cleaned up {count} credential record(s) older than {days} days")
        return count

    async def list_users_with_credentials(self) -> list[str]:
        try:
            return await self.repository.list_user_ids()
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to list users with credentials: {e}")
            raise VaultError("failed to list credentials") from e

    async def validate_credentials(self, user_id: str) -> bool:
        """True if stored credentials exist, decrypt, and are non-empty."""
        try:
            creds = await self.retrieve(user_id)
        except (IntegrityError, VaultError) as e:
            logger.warning(f"Credential validation failed for user {user_id}: {e}")
            return False
        return creds is not None and creds.is_complete
