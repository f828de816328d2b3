"""Data models for applied purchase effects."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class LedgerKind(StrEnum):
    TIP = "tip"
    COMMENT_UNLOCK = "comment_unlock"


@dataclass
class LedgerEntry:
    """One applied receipt. Append-only, unique on receipt_key."""

    id: int
    channel_id: str
    kind: LedgerKind
    receipt_key: str
    product_sku: str
    payer_id: str
    units: int = 0
    photo_id: int | None = None
    transaction_id: str | None = None
    applied_at: datetime | None = None

    def __post_init__(self) -> None:
        self.kind = LedgerKind(self.kind)
