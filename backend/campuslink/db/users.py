"""User repository for the linking columns of the users table."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import asyncpg

from .connection import get_connection
from .models import LinkedAccountStatus, LinkedUser


class UserRepository:
    """Repository for reading users and writing their link status."""

    @staticmethod
    def _row_to_user(row: asyncpg.Record) -> LinkedUser:
        """Convert a database row to a LinkedUser object."""
        return LinkedUser(
            id=row["id"],
            email=row["email"],
            linked_status=LinkedAccountStatus(row["linked_status"] or "not_linked"),
            linked_email=row["linked_email"],
            linked_at=row["linked_at"],
            last_sync=row["last_sync"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def find_by_id(self, user_id: str) -> Optional[LinkedUser]:
        """Get a user by ID."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM users WHERE id = $1",
                user_id,
            )
            return self._row_to_user(row) if row else None

    async def update_link_status(
        self,
        user_id: str,
        status: LinkedAccountStatus,
        email: Optional[str] = None,
        linked_at: Optional[datetime] = None,
        last_sync: Optional[datetime] = None,
    ) -> Optional[LinkedUser]:
        """Set the link status and, optionally, the linked account details.

        Moving to ``not_linked`` also clears the linked email and timestamps.
        """
        async with get_connection() as conn:
            if status == LinkedAccountStatus.NOT_LINKED:
                row = await conn.fetchrow(
                    """
                    UPDATE users
                    SET linked_status = $2,
                        linked_email = NULL,
                        linked_at = NULL,
                        last_sync = NULL
                    WHERE id = $1
                    RETURNING *
                    """,
                    user_id,
                    status.value,
                )
            else:
                row = await conn.fetchrow(
                    """
                    UPDATE users
                    SET linked_status = $2,
                        linked_email = COALESCE($3, linked_email),
                        linked_at = COALESCE($4, linked_at),
                        last_sync = COALESCE($5, last_sync)
                    WHERE id = $1
                    RETURNING *
                    """,
                    user_id,
                    status.value,
                    email.lower() if email else None,
                    linked_at,
                    last_sync,
                )
            return self._row_to_user(row) if row else None
