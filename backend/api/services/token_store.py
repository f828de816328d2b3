"""Delegated broadcaster credential store.

Hands out a non-expired broadcaster access token per channel, refreshing it
through the OAuth refresh-token grant when the stored one has run out.
"""

import asyncio
import logging
import weakref
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from core.errors import NoCredential
from shared.models.credential import DelegatedCredential
from shared.repositories.credential import CredentialRepository

from .twitch_api import TokenResult, TwitchAPIClient

logger = logging.getLogger(__name__)

# Used when the token endpoint omits expires_in
DEFAULT_TOKEN_TTL = 3600


def _utcnow() -> datetime:
    return datetime.now(UTC)


class DelegatedTokenStore:
    """One refreshable credential per channel, always returned fresh.

    Refreshes are serialized per channel inside the process; the write itself
    is a single upsert, so the (access, refresh, expiry) triple is replaced
    as a unit.
    """

    def __init__(
        self,
        repo: CredentialRepository,
        twitch_api: TwitchAPIClient,
        expiry_margin: int = 60,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.repo = repo
        self.twitch_api = twitch_api
        self.expiry_margin = expiry_margin
        self._clock = clock
        # Entries disappear once no caller holds the lock object
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _get_lock(self, channel_id: str) -> asyncio.Lock:
        lock = self._locks.get(channel_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[channel_id] = lock
        return lock

    def _expiry_from_ttl(self, ttl_seconds: int) -> datetime:
        # Short-lived tokens keep at least half their lifetime
        margin = min(self.expiry_margin, ttl_seconds // 2)
        usable = max(ttl_seconds - margin, 1)
        return self._clock() + timedelta(seconds=usable)

    async def save_credential(
        self,
        channel_id: str,
        access_token: str,
        refresh_token: str,
        ttl_seconds: int,
        broadcaster_login: str | None = None,
    ) -> DelegatedCredential:
        """Upsert the channel's credential; expiry is stored minus the safety margin."""
        credential = await self.repo.upsert_credential(
            channel_id=channel_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=self._expiry_from_ttl(ttl_seconds),
            broadcaster_login=broadcaster_login,
        )
        logger.info(f"Credential saved for channel {channel_id}")
        return credential

    async def get_valid_credential(self, channel_id: str) -> DelegatedCredential:
        """Return a non-expired credential, refreshing if needed.

        Raises ``NoCredential`` when the broadcaster never authorized or the
        refresh token is no longer accepted.
        """
        credential = await self.repo.get_credential(channel_id)
        if credential is None:
            raise NoCredential()
        if credential.is_fresh(self._clock()):
            return credential

        async with self._get_lock(channel_id):
            # Another request may have refreshed while we waited
            credential = await self.repo.get_credential(channel_id)
            if credential is None:
                raise NoCredential()
            if credential.is_fresh(self._clock()):
                return credential
            return await self._refresh(credential)

    async def _refresh(self, credential: DelegatedCredential) -> DelegatedCredential:
        channel_id = credential.channel_id
        if not credential.refresh_token:
            logger.warning(f"Token expired and no refresh token for channel {channel_id}")
            raise NoCredential()

        logger.info(f"Token expired for channel {channel_id}, refreshing...")
        result: TokenResult = await self.twitch_api.refresh_access_token(credential.refresh_token)
        if not result.success and result.retryable:
            logger.warning(
                f"Refresh for channel {channel_id} failed ({result.error}), retrying once"
            )
            result = await self.twitch_api.refresh_access_token(credential.refresh_token)

        if not result.success or not result.access_token:
            logger.error(f"Token refresh failed for channel {channel_id}: {result.error}")
            raise NoCredential()

        return await self.save_credential(
            channel_id=channel_id,
            access_token=result.access_token,
            refresh_token=result.refresh_token or credential.refresh_token,
            ttl_seconds=result.expires_in or DEFAULT_TOKEN_TTL,
        )
