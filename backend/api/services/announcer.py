"""Best-effort chat announcements on behalf of the broadcaster."""

import logging

from core.errors import NoCredential

from .token_store import DelegatedTokenStore
from .twitch_api import TwitchAPIClient

logger = logging.getLogger(__name__)

ANONYMOUS_NAME = "Someone"
MAX_CHAT_LENGTH = 280


class ChatAnnouncer:
    def __init__(self, token_store: DelegatedTokenStore, twitch_api: TwitchAPIClient) -> None:
        self.token_store = token_store
        self.twitch_api = twitch_api

    async def display_name(self, channel_id: str, user_id: str | None) -> str:
        """Resolve a viewer's display name, falling back to ``Someone``."""
        if not user_id:
            return ANONYMOUS_NAME
        try:
            credential = await self.token_store.get_valid_credential(channel_id)
            user = await self.twitch_api.get_user(credential.access_token, user_id)
        except NoCredential:
            return ANONYMOUS_NAME
        except Exception as e:
            logger.warning(f"Display name lookup failed: {type(e).__name__}")
            return ANONYMOUS_NAME
        if not user:
            return ANONYMOUS_NAME
        return user.get("display_name") or user.get("login") or ANONYMOUS_NAME

    async def announce(self, channel_id: str, message: str) -> bool:
        """Post *message* in the channel's chat as the broadcaster. Never raises."""
        try:
            credential = await self.token_store.get_valid_credential(channel_id)
            return await self.twitch_api.send_chat_message(
                channel_id, channel_id, message[:MAX_CHAT_LENGTH], credential.access_token
            )
        except NoCredential:
            logger.info(f"Chat announce skipped for {channel_id}: broadcaster not connected")
        except Exception as e:
            logger.warning(f"Chat announce failed for {channel_id}: {type(e).__name__}: {e}")
        return False

    async def announce_tip(self, channel_id: str, payer_id: str, units: int) -> bool:
        who = await self.display_name(channel_id, payer_id)
        return await self.announce(channel_id, f"⭐ {who} tipped a photo {units} Bits!")
