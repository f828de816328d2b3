"""Broadcaster authorization routes (OAuth code flow)"""

import html
import logging
import secrets

from fastapi import APIRouter, Cookie, Depends
from fastapi.responses import HTMLResponse, RedirectResponse

from core.config import Settings
from core.container import Engine
from core.dependencies import get_engine, get_token_store, get_twitch_api
from services import DelegatedTokenStore, TwitchAPIClient
from services.token_store import DEFAULT_TOKEN_TTL

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])

STATE_COOKIE = "oauth_state"
STATE_MAX_AGE = 10 * 60


# ============================================
# Helpers
# ============================================


def _page(title: str, message: str, status_code: int = 200) -> HTMLResponse:
    body = (
        "<!doctype html><html><head><meta charset='utf-8'>"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><h1>{html.escape(title)}</h1><p>{html.escape(message)}</p></body></html>"
    )
    response = HTMLResponse(content=body, status_code=status_code)
    response.delete_cookie(STATE_COOKIE, path="/auth")
    return response


# ============================================
# Endpoints
# ============================================


@router.get("/login")
async def broadcaster_login(
    engine: Engine = Depends(get_engine),
    twitch_api: TwitchAPIClient = Depends(get_twitch_api),
) -> RedirectResponse:
    """Send the broadcaster to Twitch to grant subscription and chat scopes"""
    settings: Settings = engine.settings
    state = secrets.token_urlsafe(24)

    response = RedirectResponse(url=twitch_api.generate_oauth_url(state=state))
    response.set_cookie(
        key=STATE_COOKIE,
        value=state,
        max_age=STATE_MAX_AGE,
        path="/auth",
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return response


@router.get("/callback", response_class=HTMLResponse)
async def broadcaster_callback(
    code: str | None = None,
    error: str | None = None,
    state: str | None = None,
    oauth_state: str | None = Cookie(None),
    twitch_api: TwitchAPIClient = Depends(get_twitch_api),
    token_store: DelegatedTokenStore = Depends(get_token_store),
) -> HTMLResponse:
    """Exchange the authorization code and store the channel's credential"""
    if error:
        logger.error(f"OAuth error from Twitch: {error}")
        return _page("Authorization failed", error, status_code=400)

    if not code:
        logger.error("No OAuth code received from Twitch")
        return _page("Authorization failed", "no_code", status_code=400)

    if not state or not oauth_state or not secrets.compare_digest(state, oauth_state):
        logger.warning("OAuth state mismatch on callback")
        return _page("Authorization failed", "invalid_state", status_code=400)

    result = await twitch_api.exchange_code_for_token(code)
    if not result.success or not result.access_token:
        logger.error(f"Failed to exchange code: {result.error}")
        return _page("Authorization failed", "token_exchange_failed", status_code=502)

    user = await twitch_api.get_user(result.access_token)
    if not user or not user.get("id"):
        logger.error("Token owner lookup failed after code exchange")
        return _page("Authorization failed", "user_lookup_failed", status_code=502)

    channel_id = str(user["id"])
    login = user.get("login") or ""
    try:
        await token_store.save_credential(
            channel_id=channel_id,
            access_token=result.access_token,
            refresh_token=result.refresh_token or "",
            ttl_seconds=result.expires_in or DEFAULT_TOKEN_TTL,
            broadcaster_login=login or None,
        )
    except Exception as e:
        logger.error(f"DB error saving credential for {channel_id}: {type(e).__name__}: {e}")
        return _page("Authorization failed", "save_failed", status_code=500)

    logger.info(f"Broadcaster authorized: {login or channel_id} ({channel_id})")
    name = user.get("display_name") or login
    return _page("Connected", f"{name} is connected. You can close this tab.")
