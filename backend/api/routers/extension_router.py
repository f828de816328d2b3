"""Panel-facing API routes (status, gated gallery, purchases, live events)"""

import asyncio
import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ConfigDict, Field

from core.config import Settings
from core.container import Engine
from core.dependencies import (
    get_engine,
    get_entitlement_resolver,
    get_gallery_repo,
    get_ledger_service,
    get_session_claims,
    get_token_store,
    require_broadcaster,
)
from core.errors import EngineError
from services import (
    DelegatedTokenStore,
    EntitlementResolver,
    LedgerService,
    PurchaseContext,
    SessionClaims,
)
from shared.models import Comment, LedgerEntry
from shared.repositories import GalleryRepository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["extension"])

# WebSocket close codes (4000-4999 are application defined)
WS_CLOSE_UNAUTHENTICATED = 4401
WS_CLOSE_SESSION_EXPIRED = 4408


# ============================================
# Request/Response Models
# ============================================


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class StatusResponse(CamelModel):
    user_id: str | None = Field(alias="userId")
    role: str
    is_subscriber: bool = Field(alias="isSubscriber")


class ConnectionResponse(CamelModel):
    connected: bool
    broadcaster_login: str = Field(alias="broadcasterLogin")
    expires_at: datetime = Field(alias="expiresAt")


class PhotoResponse(BaseModel):
    id: int
    url: str
    title: str
    tip_bits_total: int
    likes_count: int


class PhotosResponse(BaseModel):
    photos: list[PhotoResponse]


class CommentResponse(BaseModel):
    id: int
    photo_id: int
    user_id: str
    display_name: str
    message: str
    created_at: datetime | None


class CommentModerationRequest(BaseModel):
    hidden: bool = True


class ProductInfo(CamelModel):
    sku: str
    display_name: str = Field(alias="displayName")
    cost_bits: int = Field(alias="costBits")


class ProductsResponse(BaseModel):
    products: list[ProductInfo]


class TransactionCompleteRequest(CamelModel):
    # Presence and size are checked by ReceiptVerifier and LedgerService
    transaction_receipt: str | None = Field(default=None, alias="transactionReceipt")
    photo_id: int | None = Field(default=None, alias="photoId")
    comment: str | None = None


class LedgerEntryResponse(CamelModel):
    id: int
    kind: str
    product_sku: str = Field(alias="productSku")
    units: int
    photo_id: int | None = Field(alias="photoId")
    applied_at: datetime | None = Field(alias="appliedAt")


class TransactionCompleteResponse(CamelModel):
    ok: bool = True
    already_applied: bool = Field(alias="alreadyApplied")
    entry: LedgerEntryResponse


def _comment_response(comment: Comment) -> CommentResponse:
    return CommentResponse(
        id=comment.id,
        photo_id=comment.photo_id,
        user_id=comment.user_id,
        display_name=comment.display_name or "Viewer",
        message=comment.message,
        created_at=comment.created_at,
    )


def _entry_response(entry: LedgerEntry) -> LedgerEntryResponse:
    return LedgerEntryResponse(
        id=entry.id,
        kind=entry.kind.value,
        product_sku=entry.product_sku,
        units=entry.units,
        photo_id=entry.photo_id,
        applied_at=entry.applied_at,
    )


# ============================================
# Endpoints
# ============================================


@router.get("/products", response_model=ProductsResponse)
async def list_products(engine: Engine = Depends(get_engine)) -> ProductsResponse:
    """Bits products the panel offers"""
    settings: Settings = engine.settings
    products = [
        ProductInfo(sku=f"TIP_{amount}", display_name=f"Tip {amount}", cost_bits=amount)
        for amount in settings.tip_amounts
    ]
    comment_cost = "".join(ch for ch in settings.comment_unlock_sku if ch.isdigit())
    products.append(
        ProductInfo(
            sku=settings.comment_unlock_sku,
            display_name=f"Comment ({comment_cost})" if comment_cost else "Comment",
            cost_bits=int(comment_cost or 0),
        )
    )
    return ProductsResponse(products=products)


@router.get("/status", response_model=StatusResponse, response_model_by_alias=True)
async def get_status(
    claims: SessionClaims = Depends(get_session_claims),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
) -> StatusResponse:
    """Viewer identity, role and subscription gate result"""
    entitlement = await resolver.resolve(claims.channel_id, claims)
    return StatusResponse(
        user_id=claims.viewer_id,
        role=claims.role.value,
        is_subscriber=entitlement.is_entitled,
    )


@router.get(
    "/broadcaster/connection", response_model=ConnectionResponse, response_model_by_alias=True
)
async def get_broadcaster_connection(
    claims: SessionClaims = Depends(require_broadcaster),
    token_store: DelegatedTokenStore = Depends(get_token_store),
) -> ConnectionResponse:
    """Whether the channel's stored Twitch authorization still works. Broadcaster only.

    Refreshes the credential when it has expired; a missing or revoked
    authorization surfaces as 409 ``broadcaster_reconnect_required``.
    """
    credential = await token_store.get_valid_credential(claims.channel_id)
    return ConnectionResponse(
        connected=True,
        broadcaster_login=credential.broadcaster_login,
        expires_at=credential.expires_at,
    )


@router.get("/photos", response_model=PhotosResponse)
async def get_photos(
    claims: SessionClaims = Depends(get_session_claims),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    gallery: GalleryRepository = Depends(get_gallery_repo),
) -> PhotosResponse:
    """Subscriber-only photo feed with tip totals"""
    await resolver.require(claims.channel_id, claims)

    photos = await gallery.list_photos(claims.channel_id)
    return PhotosResponse(
        photos=[
            PhotoResponse(
                id=p.id,
                url=p.url,
                title=p.title,
                tip_bits_total=p.tip_units_total,
                likes_count=p.likes_count,
            )
            for p in photos
        ]
    )


@router.get("/comments", response_model=list[CommentResponse])
async def get_comments(
    photo_id: int | None = Query(default=None, alias="photoId"),
    limit: int = Query(default=50, ge=1, le=200),
    claims: SessionClaims = Depends(get_session_claims),
    resolver: EntitlementResolver = Depends(get_entitlement_resolver),
    gallery: GalleryRepository = Depends(get_gallery_repo),
) -> list[CommentResponse]:
    """Visible comments for a photo, or the channel's latest when no photo is given"""
    await resolver.require(claims.channel_id, claims)

    comments = await gallery.list_comments(claims.channel_id, photo_id=photo_id, limit=limit)
    return [_comment_response(c) for c in comments]


@router.patch("/comments/{comment_id}", response_model=CommentResponse)
async def moderate_comment(
    comment_id: int,
    body: CommentModerationRequest | None = None,
    claims: SessionClaims = Depends(require_broadcaster),
    gallery: GalleryRepository = Depends(get_gallery_repo),
) -> CommentResponse:
    """Hide (or restore) a comment. Broadcaster only."""
    hidden = body.hidden if body else True
    comment = await gallery.set_comment_hidden(claims.channel_id, comment_id, hidden)
    if comment is None:
        raise HTTPException(status_code=404, detail="comment_not_found")

    logger.info(f"Comment {comment_id} hidden={hidden} on channel {claims.channel_id}")
    return _comment_response(comment)


@router.post(
    "/transactions/complete",
    response_model=TransactionCompleteResponse,
    response_model_by_alias=True,
)
async def complete_transaction(
    request: TransactionCompleteRequest,
    claims: SessionClaims = Depends(get_session_claims),
    ledger: LedgerService = Depends(get_ledger_service),
) -> TransactionCompleteResponse:
    """Verify a Bits receipt and apply its effect once"""
    try:
        result = await ledger.apply(
            claims,
            request.transaction_receipt,
            PurchaseContext(photo_id=request.photo_id, comment_text=request.comment),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Failed to apply transaction on channel {claims.channel_id}: {e}")
        raise HTTPException(status_code=500, detail="server_error") from None

    return TransactionCompleteResponse(
        already_applied=result.already_applied,
        entry=_entry_response(result.entry),
    )


@router.websocket("/events")
async def channel_events(websocket: WebSocket, token: str | None = Query(default=None)) -> None:
    """Push ledger change events for the session's channel until disconnect"""
    engine: Engine = websocket.app.state.engine
    try:
        claims = engine.session_verifier.verify(token)
    except EngineError:
        await websocket.close(code=WS_CLOSE_UNAUTHENTICATED)
        return

    await websocket.accept()
    subscription = engine.hub.subscribe(claims.channel_id)

    async def pump() -> None:
        while True:
            await websocket.send_json(await subscription.next_event())

    async def watch_disconnect() -> None:
        while True:
            await websocket.receive_text()

    tasks = [asyncio.create_task(pump()), asyncio.create_task(watch_disconnect())]
    try:
        remaining = (claims.expires_at - datetime.now(UTC)).total_seconds()
        done, _ = await asyncio.wait(
            tasks, timeout=max(remaining, 0), return_when=asyncio.FIRST_COMPLETED
        )
        if not done:
            await websocket.close(code=WS_CLOSE_SESSION_EXPIRED)
        else:
            for task in done:
                exc = task.exception()
                if exc is not None and not isinstance(exc, WebSocketDisconnect):
                    logger.warning(f"Event stream error on {claims.channel_id}: {exc!r}")
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        engine.hub.unsubscribe(subscription)
