"""Apply verified Bits purchases to the ledger exactly once."""

import logging
import re
from dataclasses import dataclass

from core.background import TaskRunner
from core.errors import InvalidPurchase, InvalidReceipt, UnknownProduct
from shared.models.ledger import LedgerEntry
from shared.repositories.ledger import LedgerRepository, PhotoNotFoundError

from .announcer import ChatAnnouncer
from .notifications import NotificationHub
from .receipts import PurchaseReceipt, ReceiptVerifier
from .session_verifier import SessionClaims

logger = logging.getLogger(__name__)

_TIP_SKU_RE = re.compile(r"^TIP_(\d{1,10})$")

# ledger_entries.units is a Postgres INTEGER
MAX_TIP_UNITS = 2**31 - 1


def tip_units(sku: str) -> int | None:
    """Units credited by a ``TIP_<n>`` SKU, or None if it is not one."""
    match = _TIP_SKU_RE.match(sku)
    if not match:
        return None
    units = int(match.group(1))
    return units if 0 < units <= MAX_TIP_UNITS else None


@dataclass(frozen=True)
class PurchaseContext:
    photo_id: int | None = None
    comment_text: str | None = None


@dataclass(frozen=True)
class ApplyResult:
    entry: LedgerEntry
    already_applied: bool


class LedgerService:
    """Receipt verification, SKU dispatch and post-commit side effects.

    A receipt that was already applied returns its original entry with
    ``already_applied=True``; counters, fan-out and chat are untouched.
    """

    def __init__(
        self,
        verifier: ReceiptVerifier,
        repo: LedgerRepository,
        hub: NotificationHub,
        runner: TaskRunner,
        announcer: ChatAnnouncer,
        comment_unlock_sku: str = "COMMENT_500",
        comment_max_length: int = 200,
        announce_tips: bool = True,
    ) -> None:
        self.verifier = verifier
        self.repo = repo
        self.hub = hub
        self.runner = runner
        self.announcer = announcer
        self.comment_unlock_sku = comment_unlock_sku
        self.comment_max_length = comment_max_length
        self.announce_tips = announce_tips

    async def apply(
        self, claims: SessionClaims, signed_receipt: str | None, context: PurchaseContext
    ) -> ApplyResult:
        receipt = self.verifier.verify(signed_receipt)

        if claims.viewer_id and claims.viewer_id != receipt.payer_id:
            logger.warning(
                f"Receipt payer mismatch on channel {claims.channel_id}: "
                f"session={claims.viewer_id} receipt={receipt.payer_id}"
            )
            raise InvalidReceipt()

        sku = receipt.product_sku
        if sku == self.comment_unlock_sku:
            return await self._apply_comment_unlock(claims.channel_id, receipt, context)
        units = tip_units(sku)
        if units is not None:
            return await self._apply_tip(claims.channel_id, receipt, units, context)

        logger.warning(f"Unknown product sku on channel {claims.channel_id}: {sku!r}")
        raise UnknownProduct()

    # ------------------------------------------------------------------
    # SKU handlers
    # ------------------------------------------------------------------

    async def _apply_tip(
        self, channel_id: str, receipt: PurchaseReceipt, units: int, context: PurchaseContext
    ) -> ApplyResult:
        if receipt.cost_units is not None and receipt.cost_units != units:
            logger.warning(f"Tip {receipt.product_sku} carries cost {receipt.cost_units}")
            raise InvalidReceipt()
        if context.photo_id is None:
            raise InvalidPurchase("missing_photo")

        try:
            entry, created = await self.repo.apply_tip(
                channel_id=channel_id,
                photo_id=context.photo_id,
                payer_id=receipt.payer_id,
                units=units,
                receipt_key=receipt.receipt_key,
                product_sku=receipt.product_sku,
                transaction_id=receipt.transaction_id,
            )
        except PhotoNotFoundError:
            raise InvalidPurchase("unknown_photo") from None

        if not created:
            logger.info(f"Receipt {receipt.receipt_key} already applied (entry {entry.id})")
            return ApplyResult(entry=entry, already_applied=True)

        logger.info(f"Tip of {units} applied to photo {context.photo_id} on channel {channel_id}")
        self._notify(channel_id, {"type": "tip", "photoId": entry.photo_id, "units": units})
        if self.announce_tips:
            self.runner.spawn(
                self.announcer.announce_tip(channel_id, receipt.payer_id, units),
                name=f"chat:{channel_id}",
            )
        return ApplyResult(entry=entry, already_applied=False)

    async def _apply_comment_unlock(
        self, channel_id: str, receipt: PurchaseReceipt, context: PurchaseContext
    ) -> ApplyResult:
        text = (context.comment_text or "").strip()
        if not text:
            raise InvalidPurchase("missing_comment")
        if len(text) > self.comment_max_length:
            raise InvalidPurchase("comment_too_long")
        if context.photo_id is None:
            raise InvalidPurchase("missing_photo")

        existing = await self.repo.get_entry_by_receipt_key(receipt.receipt_key)
        if existing is not None:
            logger.info(f"Receipt {receipt.receipt_key} already applied (entry {existing.id})")
            return ApplyResult(entry=existing, already_applied=True)

        display_name = await self.announcer.display_name(channel_id, receipt.payer_id)
        try:
            entry, created = await self.repo.apply_comment_unlock(
                channel_id=channel_id,
                photo_id=context.photo_id,
                payer_id=receipt.payer_id,
                display_name=display_name,
                message=text,
                receipt_key=receipt.receipt_key,
                product_sku=receipt.product_sku,
                units=receipt.cost_units or 0,
                transaction_id=receipt.transaction_id,
            )
        except PhotoNotFoundError:
            raise InvalidPurchase("unknown_photo") from None

        if not created:
            logger.info(f"Receipt {receipt.receipt_key} already applied (entry {entry.id})")
            return ApplyResult(entry=entry, already_applied=True)

        logger.info(f"Paid comment unlocked on photo {context.photo_id} by {receipt.payer_id}")
        self._notify(channel_id, {"type": "comment", "photoId": entry.photo_id})
        return ApplyResult(entry=entry, already_applied=False)

    def _notify(self, channel_id: str, event: dict) -> None:
        try:
            self.hub.publish(channel_id, event)
        except Exception as e:
            logger.warning(f"Fan-out failed for {channel_id}: {type(e).__name__}: {e}")
