"""Process-wide engine container.

Built once in the app lifespan from the settings and the connected database,
stored on ``app.state.engine`` and closed on shutdown.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from core.background import TaskRunner
from core.config import Settings
from services import (
    ChatAnnouncer,
    DelegatedTokenStore,
    EntitlementResolver,
    ExtensionPubSubForwarder,
    LedgerService,
    NotificationHub,
    ReceiptVerifier,
    SessionVerifier,
    TwitchAPIClient,
)
from shared.database import DatabaseManager
from shared.repositories import CredentialRepository, GalleryRepository, LedgerRepository

logger = logging.getLogger(__name__)


@dataclass
class Engine:
    settings: Settings
    runner: TaskRunner
    twitch_api: TwitchAPIClient
    session_verifier: SessionVerifier
    token_store: DelegatedTokenStore
    entitlement: EntitlementResolver
    announcer: ChatAnnouncer
    hub: NotificationHub
    ledger: LedgerService
    gallery: GalleryRepository
    db: DatabaseManager | None = None

    @classmethod
    def build(cls, settings: Settings, db: DatabaseManager) -> Engine:
        runner = TaskRunner()
        twitch_api = TwitchAPIClient(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            extension_client_id=settings.extension_client_id,
            timeout=settings.upstream_timeout,
        )
        session_verifier = SessionVerifier(settings.extension_secret_bytes, settings.jwt_algorithm)
        token_store = DelegatedTokenStore(
            CredentialRepository(db.pool), twitch_api, expiry_margin=settings.token_expiry_margin
        )
        announcer = ChatAnnouncer(token_store, twitch_api)

        forwarder = None
        if settings.pubsub_enabled:
            forwarder = ExtensionPubSubForwarder(
                twitch_api, session_verifier, settings.extension_owner_user_id
            )
        hub = NotificationHub(runner, forwarder=forwarder)

        ledger = LedgerService(
            verifier=ReceiptVerifier(settings.receipt_secret_bytes, settings.jwt_algorithm),
            repo=LedgerRepository(db.pool),
            hub=hub,
            runner=runner,
            announcer=announcer,
            comment_unlock_sku=settings.comment_unlock_sku,
            comment_max_length=settings.comment_max_length,
            announce_tips=settings.chat_announce_enabled,
        )

        return cls(
            settings=settings,
            runner=runner,
            twitch_api=twitch_api,
            session_verifier=session_verifier,
            token_store=token_store,
            entitlement=EntitlementResolver(
                token_store, twitch_api, cache_ttl=settings.subscription_cache_ttl
            ),
            announcer=announcer,
            hub=hub,
            ledger=ledger,
            gallery=GalleryRepository(db.pool),
            db=db,
        )

    async def close(self) -> None:
        """Let background work finish, then release upstream connections."""
        await self.runner.shutdown()
        await self.twitch_api.close()
        logger.info("Engine closed")
