"""Extension session credential verification (Twitch Extension JWT)"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

import jwt

from core.errors import Unauthenticated

logger = logging.getLogger(__name__)


class Role(StrEnum):
    VIEWER = "viewer"
    MODERATOR = "moderator"
    BROADCASTER = "broadcaster"

    @property
    def is_staff(self) -> bool:
        return self in (Role.MODERATOR, Role.BROADCASTER)


@dataclass(frozen=True)
class SessionClaims:
    """Verified identity of one panel session. Never persisted."""

    channel_id: str
    opaque_viewer_id: str
    role: Role
    expires_at: datetime
    viewer_id: str | None = None
    issued_at: datetime | None = None

    @property
    def has_shared_identity(self) -> bool:
        return bool(self.viewer_id)


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token from ``Bearer <token>`` (or a bare token)."""
    if not authorization:
        return None
    parts = authorization.strip().split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    if len(parts) == 1:
        return parts[0]
    return None


class SessionVerifier:
    """Verify Extension session tokens signed with the shared secret.

    Only the configured HMAC algorithm is accepted, so tokens using ``none``
    or an asymmetric algorithm are rejected before any claim is read.
    """

    def __init__(self, secret: bytes, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("Extension secret cannot be empty")

        self.secret = secret
        self.algorithm = algorithm

    def verify(self, credential: str | None) -> SessionClaims:
        """Verify a token (raw or ``Bearer``-prefixed) and return its claims."""
        token = extract_bearer(credential)
        if not token:
            raise Unauthenticated()

        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["exp"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Session token expired")
            raise Unauthenticated() from None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid session token: {type(e).__name__}")
            raise Unauthenticated() from None

        return self._to_claims(payload)

    @staticmethod
    def _to_claims(payload: dict) -> SessionClaims:
        channel_id = payload.get("channel_id")
        opaque_id = payload.get("opaque_user_id")
        if not channel_id or not opaque_id:
            logger.warning("Session token missing channel_id or opaque_user_id")
            raise Unauthenticated()

        try:
            role = Role(payload.get("role", Role.VIEWER))
        except ValueError:
            logger.warning(f"Session token has unsupported role: {payload.get('role')!r}")
            raise Unauthenticated() from None

        user_id = payload.get("user_id")
        iat = payload.get("iat")
        return SessionClaims(
            channel_id=str(channel_id),
            opaque_viewer_id=str(opaque_id),
            role=role,
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            viewer_id=str(user_id) if user_id else None,
            issued_at=datetime.fromtimestamp(iat, UTC) if iat else None,
        )

    def sign_external_token(
        self, owner_user_id: str, channel_id: str | None = None, ttl_seconds: int = 60
    ) -> str:
        """Sign the short-lived ``external`` token used to call Extension APIs."""
        payload: dict = {
            "exp": datetime.now(UTC) + timedelta(seconds=ttl_seconds),
            "user_id": owner_user_id or "0",
            "role": "external",
        }
        if channel_id:
            payload["channel_id"] = channel_id
            payload["pubsub_perms"] = {"send": ["broadcast"]}
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)
