"""Services layer - Business logic

Each service receives its collaborators through its constructor; the
``Engine`` container in ``core.container`` wires them together.
"""

from .announcer import ChatAnnouncer
from .entitlement import Entitlement, EntitlementResolver
from .ledger_service import ApplyResult, LedgerService, PurchaseContext
from .notifications import ExtensionPubSubForwarder, NotificationHub, Subscription
from .receipts import PurchaseReceipt, ReceiptVerifier
from .session_verifier import Role, SessionClaims, SessionVerifier
from .token_store import DelegatedTokenStore
from .twitch_api import TokenResult, TwitchAPIClient

__all__ = [
    "ApplyResult",
    "ChatAnnouncer",
    "DelegatedTokenStore",
    "Entitlement",
    "EntitlementResolver",
    "ExtensionPubSubForwarder",
    "LedgerService",
    "NotificationHub",
    "PurchaseContext",
    "PurchaseReceipt",
    "ReceiptVerifier",
    "Role",
    "SessionClaims",
    "SessionVerifier",
    "Subscription",
    "TokenResult",
    "TwitchAPIClient",
]
