"""Read models for the photo catalog and its comments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Photo:
    """Gallery photo with its running tip aggregate."""

    id: int
    channel_id: str
    url: str
    title: str = ""
    tip_units_total: int = 0
    likes_count: int = 0
    created_at: datetime | None = None


@dataclass
class Comment:
    """Paid comment attached to a photo."""

    id: int
    channel_id: str
    photo_id: int
    user_id: str
    message: str
    display_name: str = ""
    hidden: bool = False
    ledger_entry_id: int | None = None
    created_at: datetime | None = None
