"""Credential repository: ciphertext rows in linked_credentials."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from .connection import get_connection
from .models import CredentialRecord


class CredentialRepository:
    """Repository for encrypted credential CRUD operations.

    Rows only ever hold ciphertext; encryption happens in the vault.
    """

    @staticmethod
    def _row_to_record(row: asyncpg.Record) -> CredentialRecord:
        """Convert a database row to a CredentialRecord object."""
        return CredentialRecord(
            id=str(row["id"]),
            user_id=row["user_id"],
            encrypted_username=row["encrypted_username"],
            encrypted_password=row["encrypted_password"],
            key_fingerprint=row["key_fingerprint"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def upsert(
        self,
        user_id: str,
        encrypted_username: str,
        encrypted_password: str,
        key_fingerprint: str,
    ) -> CredentialRecord:
        """Insert or overwrite the credential row for a user."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO linked_credentials (
                    user_id, encrypted_username, encrypted_password, key_fingerprint
                )
                VALUES ($1, $2, $3, $4)
                ON CONFLICT (user_id) DO UPDATE SET
                    encrypted_username = EXCLUDED.encrypted_username,
                    encrypted_password = EXCLUDED.encrypted_password,
                    key_fingerprint = EXCLUDED.key_fingerprint
                RETURNING *
                """,
                user_id,
                encrypted_username,
                encrypted_password,
                key_fingerprint,
            )
            return self._row_to_record(row)

    async def fetch(self, user_id: str) -> Optional[CredentialRecord]:
        """Get the credential row for a user."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM linked_credentials WHERE user_id = $1",
                user_id,
            )
            return self._row_to_record(row) if row else None

    async def exists(self, user_id: str) -> bool:
        async with get_connection() as conn:
            return await conn.fetchval(
                "SELECT EXISTS(SELECT 1 FROM linked_credentials WHERE user_id = $1)",
                user_id,
            )

    async def delete(self, user_id: str) -> bool:
        """Delete the credential row. Returns True if a row was removed."""
        async with get_connection() as conn:
            result = await conn.execute(
                "DELETE FROM linked_credentials WHERE user_id = $1",
                user_id,
            )
            return result == "DELETE 1"

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete rows last updated before *cutoff*. Returns the count."""
        async with get_connection() as conn:
            rows = await conn.fetch(
                "DELETE FROM linked_credentials WHERE updated_at < $1 RETURNING id",
                cutoff,
            )
            return len(rows)

    async def list_user_ids(self) -> list[str]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT user_id FROM linked_credentials ORDER BY created_at"
            )
            return [row["user_id"] for row in rows]
