"""Twitch API client service.

Token types:
- Broadcaster User Access Token: acquired once through the OAuth code flow,
  stored per channel and rotated with its refresh token. Used for
  subscription checks, user lookups and chat messages.
- Extension "external" JWT: signed locally with the Extension secret. Used
  for Extension PubSub.
"""

import json
import logging
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx

from core.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

HELIX_BASE = "https://api.twitch.tv/helix"
OAUTH_BASE = "https://id.twitch.tv/oauth2"


@dataclass
class TokenResult:
    """Result of a code exchange or refresh against the token endpoint."""

    success: bool
    access_token: str | None = None
    refresh_token: str | None = None
    expires_in: int = 0
    error: str | None = None
    retryable: bool = False


class TwitchAPIClient:
    """Client for interacting with Twitch API.

    Manages a shared httpx client for connection reuse. Every call carries the
    client-wide timeout so no request can hang on Twitch.
    """

    BROADCASTER_SCOPES = [
        "channel:read:subscriptions",
        "user:write:chat",
    ]

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        extension_client_id: str = "",
        timeout: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ):
        if not client_id or not client_secret:
            raise ValueError("Twitch client_id and client_secret are required")

        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.extension_client_id = extension_client_id or client_id

        # Shared HTTP client, reuses TCP connections across requests
        self._http = http or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the shared HTTP client. Call on app shutdown."""
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _user_headers(self, token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}", "Client-Id": self.client_id}

    async def _token_request(self, data: dict[str, str]) -> TokenResult:
        """POST form-encoded data to the OAuth token endpoint."""
        grant = data.get("grant_type", "")
        try:
            response = await self._http.post(
                f"{OAUTH_BASE}/token",
                data={"client_id": self.client_id, "client_secret": self.client_secret, **data},
            )
        except httpx.TimeoutException:
            logger.error(f"Timeout on token endpoint ({grant})")
            return TokenResult(success=False, error="timeout", retryable=True)
        except httpx.HTTPError as e:
            logger.error(f"Token endpoint unreachable ({grant}): {type(e).__name__}")
            return TokenResult(success=False, error="network_error", retryable=True)

        if response.status_code != 200:
            try:
                error_msg = response.json().get("message", f"HTTP {response.status_code}")
            except ValueError:
                error_msg = f"HTTP {response.status_code}"
            retryable = response.status_code >= 500 or response.status_code == 429
            logger.error(f"Token request failed ({grant}): {response.status_code} {error_msg}")
            return TokenResult(success=False, error=error_msg, retryable=retryable)

        payload = response.json()
        access_token = payload.get("access_token")
        if not access_token:
            return TokenResult(success=False, error="no_access_token")

        return TokenResult(
            success=True,
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(payload.get("expires_in") or 0),
        )

    # ------------------------------------------------------------------
    # OAuth flow
    # ------------------------------------------------------------------

    def generate_oauth_url(self, state: str | None = None) -> str:
        """Generate Twitch OAuth authorization URL for the broadcaster."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.BROADCASTER_SCOPES),
        }
        if state:
            params["state"] = state
        return f"{OAUTH_BASE}/authorize?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> TokenResult:
        """Exchange an OAuth authorization code for a user token pair."""
        result = await self._token_request(
            {
                "code": code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
            }
        )
        if result.success:
            logger.debug("Authorization code exchanged")
        return result

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        """Refresh a user's access token using their refresh token.

        Twitch may rotate the refresh token; when it does not return one the
        old refresh token stays valid and is carried over.
        """
        result = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )
        if result.success and not result.refresh_token:
            result.refresh_token = refresh_token
        return result

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def get_user(self, access_token: str, user_id: str | None = None) -> dict | None:
        """Look up a user by id, or the token owner when *user_id* is None."""
        params = {"id": user_id} if user_id else None
        try:
            response = await self._http.get(
                f"{HELIX_BASE}/users", params=params, headers=self._user_headers(access_token)
            )
        except httpx.HTTPError as e:
            logger.warning(f"Helix GET /users error: {type(e).__name__}")
            return None

        if response.status_code != 200:
            logger.warning(f"Failed to fetch user: {response.status_code}")
            return None

        users = response.json().get("data", [])
        return users[0] if users else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    async def check_user_subscription(
        self, broadcaster_id: str, user_id: str, access_token: str
    ) -> bool:
        """Return whether *user_id* is subscribed to *broadcaster_id*.

        Helix answers 404 for "not subscribed". Anything other than 200/404
        raises ``UpstreamUnavailable``.
        """
        try:
            response = await self._http.get(
                f"{HELIX_BASE}/subscriptions",
                params={"broadcaster_id": broadcaster_id, "user_id": user_id},
                headers=self._user_headers(access_token),
            )
        except httpx.HTTPError as e:
            logger.warning(f"Helix GET /subscriptions error: {type(e).__name__}")
            raise UpstreamUnavailable() from None

        if response.status_code == 404:
            return False
        if response.status_code != 200:
            logger.warning(
                f"Subscription check failed: broadcaster={broadcaster_id} "
                f"status={response.status_code}"
            )
            raise UpstreamUnavailable()

        return len(response.json().get("data", [])) > 0

    # ------------------------------------------------------------------
    # Chat / Extension PubSub (best effort)
    # ------------------------------------------------------------------

    async def send_chat_message(
        self, broadcaster_id: str, sender_id: str, message: str, access_token: str
    ) -> bool:
        """Send a chat message as *sender_id* (requires ``user:write:chat``)."""
        response = await self._http.post(
            f"{HELIX_BASE}/chat/messages",
            json={"broadcaster_id": broadcaster_id, "sender_id": sender_id, "message": message},
            headers=self._user_headers(access_token),
        )
        if response.status_code != 200:
            logger.warning(f"Chat send failed: broadcaster={broadcaster_id} {response.status_code}")
            return False

        data = response.json().get("data", [])
        return bool(data and data[0].get("is_sent"))

    async def send_extension_pubsub(
        self, broadcaster_id: str, message: dict, external_jwt: str
    ) -> bool:
        """Broadcast a JSON message to every Extension instance on a channel."""
        response = await self._http.post(
            f"{HELIX_BASE}/extensions/pubsub",
            json={
                "target": ["broadcast"],
                "broadcaster_id": broadcaster_id,
                "is_global_broadcast": False,
                "message": json.dumps(message),
            },
            headers={
                "Authorization": f"Bearer {external_jwt}",
                "Client-Id": self.extension_client_id,
            },
        )
        if response.status_code not in (200, 204):
            logger.warning(
                f"Extension PubSub failed: broadcaster={broadcaster_id} {response.status_code}"
            )
            return False
        return True
