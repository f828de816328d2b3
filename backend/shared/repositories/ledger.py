"""Repository for ledger_entries and the aggregates written alongside them.

Every ``apply_*`` method runs in a single transaction: the ledger insert is
guarded by the unique ``receipt_key`` and the aggregate/comment write only
happens when that insert actually created a row.
"""

from __future__ import annotations

import logging

import asyncpg

from shared.models.ledger import LedgerEntry, LedgerKind

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, channel_id, kind, receipt_key, product_sku, payer_id, units, "
    "photo_id, transaction_id, applied_at"
)


class PhotoNotFoundError(LookupError):
    """The target photo does not exist in the channel."""


class LedgerRepository:
    """SQL operations for applied purchase effects."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    # ==================== Internal helpers ====================

    async def _insert_entry(
        self,
        conn: asyncpg.Connection,
        *,
        channel_id: str,
        kind: LedgerKind,
        receipt_key: str,
        product_sku: str,
        payer_id: str,
        units: int,
        photo_id: int | None,
        transaction_id: str | None,
    ) -> tuple[LedgerEntry, bool]:
        row = await conn.fetchrow(
            f"""
            INSERT INTO ledger_entries
                (channel_id, kind, receipt_key, product_sku, payer_id, units,
                 photo_id, transaction_id)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            ON CONFLICT (receipt_key) DO NOTHING
            RETURNING {_COLUMNS}
            """,
            channel_id,
            kind.value,
            receipt_key,
            product_sku,
            payer_id,
            units,
            photo_id,
            transaction_id,
        )
        if row:
            return LedgerEntry(**dict(row)), True

        existing = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM ledger_entries WHERE receipt_key = $1",
            receipt_key,
        )
        return LedgerEntry(**dict(existing)), False

    # ==================== Apply ====================

    async def apply_tip(
        self,
        *,
        channel_id: str,
        photo_id: int,
        payer_id: str,
        units: int,
        receipt_key: str,
        product_sku: str,
        transaction_id: str | None = None,
    ) -> tuple[LedgerEntry, bool]:
        """Record a tip and bump the photo's running total.

        Returns ``(entry, created)``. When the receipt was already applied the
        original entry is returned and the counters are left untouched.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                entry, created = await self._insert_entry(
                    conn,
                    channel_id=channel_id,
                    kind=LedgerKind.TIP,
                    receipt_key=receipt_key,
                    product_sku=product_sku,
                    payer_id=payer_id,
                    units=units,
                    photo_id=photo_id,
                    transaction_id=transaction_id,
                )
                if not created:
                    return entry, False

                updated = await conn.fetchval(
                    """
                    UPDATE photos SET
                        tip_units_total = tip_units_total + $1,
                        likes_count     = likes_count + 1
                    WHERE id = $2 AND channel_id = $3
                    RETURNING tip_units_total
                    """,
                    units,
                    photo_id,
                    channel_id,
                )
                if updated is None:
                    # Raising inside the transaction rolls back the ledger insert
                    raise PhotoNotFoundError(photo_id)

        logger.debug(f"Tip applied: channel={channel_id} photo={photo_id} total={updated}")
        return entry, True

    async def apply_comment_unlock(
        self,
        *,
        channel_id: str,
        photo_id: int,
        payer_id: str,
        display_name: str,
        message: str,
        receipt_key: str,
        product_sku: str,
        units: int = 0,
        transaction_id: str | None = None,
    ) -> tuple[LedgerEntry, bool]:
        """Record a paid comment unlock and persist the comment it paid for."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                entry, created = await self._insert_entry(
                    conn,
                    channel_id=channel_id,
                    kind=LedgerKind.COMMENT_UNLOCK,
                    receipt_key=receipt_key,
                    product_sku=product_sku,
                    payer_id=payer_id,
                    units=units,
                    photo_id=photo_id,
                    transaction_id=transaction_id,
                )
                if not created:
                    return entry, False

                exists = await conn.fetchval(
                    "SELECT 1 FROM photos WHERE id = $1 AND channel_id = $2",
                    photo_id,
                    channel_id,
                )
                if not exists:
                    raise PhotoNotFoundError(photo_id)

                await conn.execute(
                    """
                    INSERT INTO comments
                        (channel_id, photo_id, user_id, display_name, message, ledger_entry_id)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                    channel_id,
                    photo_id,
                    payer_id,
                    display_name,
                    message,
                    entry.id,
                )

        return entry, True

    # ==================== Queries ====================

    async def get_entry_by_receipt_key(self, receipt_key: str) -> LedgerEntry | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM ledger_entries WHERE receipt_key = $1",
                receipt_key,
            )
            return LedgerEntry(**dict(row)) if row else None

    async def list_entries(self, channel_id: str, limit: int = 50) -> list[LedgerEntry]:
        """Most recent entries for a channel."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM ledger_entries WHERE channel_id = $1 "
                "ORDER BY id DESC LIMIT $2",
                channel_id,
                limit,
            )
            return [LedgerEntry(**dict(r)) for r in rows]

    async def list_tip_drift(self, channel_id: str | None = None) -> list[dict]:
        """Photos whose running tip total disagrees with the sum of their tip entries."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT p.id AS photo_id, p.channel_id, p.tip_units_total,
                       COALESCE(SUM(l.units), 0) AS ledger_units
                FROM photos p
                LEFT JOIN ledger_entries l
                    ON l.photo_id = p.id AND l.kind = 'tip'
                WHERE ($1::text IS NULL OR p.channel_id = $1)
                GROUP BY p.id, p.channel_id, p.tip_units_total
                HAVING p.tip_units_total <> COALESCE(SUM(l.units), 0)
                """,
                channel_id,
            )
            return [dict(r) for r in rows]
