"""Bits transaction receipt verification.

Receipts arrive as HS-signed JWTs (``transaction.transactionReceipt`` in the
Extension helper). Their ``data`` payload is normalized here into a single
``PurchaseReceipt`` shape; nothing past this module probes the raw claims.
"""

import hashlib
import logging
from dataclasses import dataclass

import jwt

from core.errors import InvalidReceipt

logger = logging.getLogger(__name__)

# Real receipts are well under 1 KiB
MAX_RECEIPT_LENGTH = 8192


@dataclass(frozen=True)
class PurchaseReceipt:
    product_sku: str
    payer_id: str
    receipt_key: str
    transaction_id: str | None = None
    cost_units: int | None = None


def _cost_amount(data: dict, product: object) -> int | None:
    cost = product.get("cost") if isinstance(product, dict) else None
    if cost is None:
        cost = data.get("cost")
    if cost is None:
        return None
    amount = cost.get("amount") if isinstance(cost, dict) else None
    if amount is None:
        return None
    if isinstance(amount, bool) or not isinstance(amount, int | str):
        raise InvalidReceipt()
    try:
        return int(amount)
    except ValueError:
        raise InvalidReceipt() from None


class ReceiptVerifier:
    """Verify and normalize signed purchase receipts."""

    def __init__(self, secret: bytes, algorithm: str = "HS256"):
        if not secret:
            raise ValueError("Receipt secret cannot be empty")
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, signed_receipt: str | None) -> PurchaseReceipt:
        if not signed_receipt or not isinstance(signed_receipt, str):
            raise InvalidReceipt()
        if len(signed_receipt) > MAX_RECEIPT_LENGTH:
            logger.warning(f"Rejected receipt: {len(signed_receipt)} characters")
            raise InvalidReceipt()

        try:
            payload = jwt.decode(signed_receipt, self.secret, algorithms=[self.algorithm])
        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected receipt: {type(e).__name__}")
            raise InvalidReceipt() from None

        data = payload.get("data")
        if not isinstance(data, dict):
            logger.warning("Rejected receipt: missing data object")
            raise InvalidReceipt()

        payer_id = data.get("userId")
        if not payer_id:
            logger.warning("Rejected receipt: missing userId")
            raise InvalidReceipt()

        product = data.get("product")
        sku = product.get("sku") if isinstance(product, dict) else product
        if not isinstance(sku, str) or not sku.strip():
            logger.warning("Rejected receipt: missing product sku")
            raise InvalidReceipt()

        transaction_id = data.get("transactionId")
        transaction_id = str(transaction_id) if transaction_id else None

        return PurchaseReceipt(
            product_sku=sku.strip(),
            payer_id=str(payer_id),
            receipt_key=self.receipt_key(signed_receipt, transaction_id),
            transaction_id=transaction_id,
            cost_units=_cost_amount(data, product),
        )

    @staticmethod
    def receipt_key(signed_receipt: str, transaction_id: str | None) -> str:
        """Idempotency key: the transaction id, or a digest of the whole receipt."""
        if transaction_id:
            return f"txn:{transaction_id}"
        return "sha256:" + hashlib.sha256(signed_receipt.encode()).hexdigest()
