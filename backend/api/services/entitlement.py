"""Subscription entitlement resolution for panel viewers."""

import logging
from dataclasses import dataclass

from cachetools import TTLCache  # type: ignore[import-untyped]

from core.errors import Forbidden, NoCredential, UpstreamUnavailable

from .session_verifier import Role, SessionClaims
from .token_store import DelegatedTokenStore
from .twitch_api import TwitchAPIClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Entitlement:
    role: Role
    is_entitled: bool


class EntitlementResolver:
    """Decide whether a session may see subscriber-only content.

    Rules, in order:
      1. moderator / broadcaster of the channel: always entitled
      2. no shared identity: never entitled
      3. otherwise ask Twitch, failing closed on any error

    Only positive answers are cached.
    """

    def __init__(
        self,
        token_store: DelegatedTokenStore,
        twitch_api: TwitchAPIClient,
        cache_ttl: int = 60,
        cache_size: int = 4096,
    ) -> None:
        self.token_store = token_store
        self.twitch_api = twitch_api
        self._positive: TTLCache | None = (
            TTLCache(maxsize=cache_size, ttl=cache_ttl) if cache_ttl > 0 else None
        )

    async def resolve(self, channel_id: str, claims: SessionClaims) -> Entitlement:
        if claims.channel_id != channel_id:
            return Entitlement(role=claims.role, is_entitled=False)
        if claims.role.is_staff:
            return Entitlement(role=claims.role, is_entitled=True)
        if not claims.viewer_id:
            return Entitlement(role=claims.role, is_entitled=False)

        is_sub = await self.is_subscriber(channel_id, claims.viewer_id)
        return Entitlement(role=claims.role, is_entitled=is_sub)

    async def require(self, channel_id: str, claims: SessionClaims) -> Entitlement:
        """Resolve and raise ``Forbidden`` unless entitled."""
        entitlement = await self.resolve(channel_id, claims)
        if not entitlement.is_entitled:
            reason = "identity_required" if not claims.viewer_id else "sub_only"
            raise Forbidden(reason)
        return entitlement

    async def is_subscriber(self, channel_id: str, viewer_id: str) -> bool:
        key = (channel_id, viewer_id)
        if self._positive is not None and key in self._positive:
            return True

        try:
            credential = await self.token_store.get_valid_credential(channel_id)
            is_sub = await self.twitch_api.check_user_subscription(
                channel_id, viewer_id, credential.access_token
            )
        except NoCredential:
            logger.warning(f"No broadcaster credential for channel {channel_id}, denying")
            return False
        except UpstreamUnavailable:
            logger.warning(f"Subscription check unavailable for channel {channel_id}, denying")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error checking subscription: {e}")
            return False

        if is_sub and self._positive is not None:
            self._positive[key] = True
        return is_sub
