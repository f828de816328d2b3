"""Dependency injection utilities for FastAPI"""

import logging

from fastapi import Depends, Header, Request

from core.container import Engine
from core.errors import Forbidden
from services import (
    DelegatedTokenStore,
    EntitlementResolver,
    LedgerService,
    Role,
    SessionClaims,
    SessionVerifier,
    TwitchAPIClient,
)
from shared.repositories import GalleryRepository

logger = logging.getLogger(__name__)


# ============================================
# Service Dependencies
# ============================================


def get_engine(request: Request) -> Engine:
    """Return the engine container built in the app lifespan"""
    return request.app.state.engine


def get_session_verifier(engine: Engine = Depends(get_engine)) -> SessionVerifier:
    return engine.session_verifier


def get_twitch_api(engine: Engine = Depends(get_engine)) -> TwitchAPIClient:
    return engine.twitch_api


def get_token_store(engine: Engine = Depends(get_engine)) -> DelegatedTokenStore:
    return engine.token_store


def get_entitlement_resolver(engine: Engine = Depends(get_engine)) -> EntitlementResolver:
    return engine.entitlement


def get_ledger_service(engine: Engine = Depends(get_engine)) -> LedgerService:
    return engine.ledger


def get_gallery_repo(engine: Engine = Depends(get_engine)) -> GalleryRepository:
    return engine.gallery


# ============================================
# Authentication Dependencies
# ============================================


def get_session_claims(
    authorization: str | None = Header(None),
    verifier: SessionVerifier = Depends(get_session_verifier),
) -> SessionClaims:
    """Verify the Extension JWT from ``Authorization: Bearer <token>``

    Identity and role are only ever read from the verified token.
    """
    return verifier.verify(authorization)


def require_broadcaster(claims: SessionClaims = Depends(get_session_claims)) -> SessionClaims:
    """Allow only the channel's broadcaster"""
    if claims.role != Role.BROADCASTER:
        logger.warning(f"Broadcaster-only call by {claims.role} on channel {claims.channel_id}")
        raise Forbidden()
    return claims
