"""Data model for the delegated broadcaster credential table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass
class DelegatedCredential:
    """Broadcaster OAuth token pair, one row per channel."""

    channel_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime
    broadcaster_login: str = ""
    updated_at: datetime | None = None

    def is_fresh(self, now: datetime | None = None) -> bool:
        """True while the access token can still be handed out."""
        now = now or datetime.now(UTC)
        return bool(self.access_token) and now < self.expires_at
