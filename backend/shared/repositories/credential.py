"""Repository for the delegated_credentials table."""

from __future__ import annotations

import logging
from datetime import datetime

import asyncpg

from shared.models.credential import DelegatedCredential

logger = logging.getLogger(__name__)

_COLUMNS = "channel_id, access_token, refresh_token, expires_at, broadcaster_login, updated_at"


class CredentialRepository:
    """Pure SQL operations for broadcaster OAuth credentials."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_credential(self, channel_id: str) -> DelegatedCredential | None:
        """Get the stored credential for a channel."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM delegated_credentials WHERE channel_id = $1",
                channel_id,
            )
            if not row:
                return None
            return DelegatedCredential(**dict(row))

    async def upsert_credential(
        self,
        channel_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        broadcaster_login: str | None = None,
    ) -> DelegatedCredential:
        """Insert or replace the (access, refresh, expiry) triple in one statement.

        ``broadcaster_login`` is only overwritten when given, so refreshes keep
        the login recorded at authorization time.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO delegated_credentials
                    (channel_id, access_token, refresh_token, expires_at, broadcaster_login)
                VALUES ($1, $2, $3, $4, COALESCE($5, ''))
                ON CONFLICT (channel_id) DO UPDATE SET
                    access_token      = EXCLUDED.access_token,
                    refresh_token     = EXCLUDED.refresh_token,
                    expires_at        = EXCLUDED.expires_at,
                    broadcaster_login = COALESCE($5, delegated_credentials.broadcaster_login),
                    updated_at        = NOW()
                RETURNING {_COLUMNS}
                """,
                channel_id,
                access_token,
                refresh_token,
                expires_at,
                broadcaster_login,
            )
        return DelegatedCredential(**dict(row))
