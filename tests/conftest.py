"""Shared fixtures: in-memory repositories, a fake Twitch client and token helpers."""

from __future__ import annotations

import asyncio
import base64
import itertools
from datetime import UTC, datetime, timedelta

import jwt
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app import create_app
from core.background import TaskRunner
from core.config import Settings
from core.container import Engine
from services import (
    ChatAnnouncer,
    DelegatedTokenStore,
    EntitlementResolver,
    LedgerService,
    NotificationHub,
    ReceiptVerifier,
    SessionVerifier,
    TokenResult,
)
from shared.models import Comment, DelegatedCredential, LedgerEntry, LedgerKind, Photo
from shared.repositories import PhotoNotFoundError

SECRET = b"extension-shared-secret-for-tests"
SECRET_B64 = base64.b64encode(SECRET).decode()

CHANNEL_ID = "1001"
VIEWER_ID = "2002"
OTHER_VIEWER_ID = "3003"


# --- Token helpers ---


def make_session_token(
    channel_id: str = CHANNEL_ID,
    role: str = "viewer",
    user_id: str | None = VIEWER_ID,
    opaque_user_id: str = "U2002",
    expires_in: int = 300,
    secret: bytes = SECRET,
    algorithm: str = "HS256",
) -> str:
    now = datetime.now(UTC)
    payload: dict = {
        "exp": now + timedelta(seconds=expires_in),
        "iat": now,
        "channel_id": channel_id,
        "opaque_user_id": opaque_user_id,
        "role": role,
    }
    if user_id:
        payload["user_id"] = user_id
    return jwt.encode(payload, secret, algorithm=algorithm)


def make_receipt(
    sku: str,
    user_id: str = VIEWER_ID,
    transaction_id: str | None = "T1",
    cost: int | None = None,
    secret: bytes = SECRET,
) -> str:
    product: dict = {"domainId": "twitch.ext.test", "sku": sku}
    if cost is not None:
        product["cost"] = {"amount": cost, "type": "bits"}
    data: dict = {"userId": user_id, "product": product, "time": "2026-01-01T00:00:00Z"}
    if transaction_id:
        data["transactionId"] = transaction_id
    payload = {
        "topic": "bits_transaction_receipt",
        "exp": datetime.now(UTC) + timedelta(minutes=5),
        "data": data,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# --- Fakes ---


class FakeCredentialRepository:
    def __init__(self) -> None:
        self.rows: dict[str, DelegatedCredential] = {}
        self.upserts = 0

    async def get_credential(self, channel_id: str) -> DelegatedCredential | None:
        await asyncio.sleep(0)
        return self.rows.get(channel_id)

    async def upsert_credential(
        self,
        channel_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        broadcaster_login: str | None = None,
    ) -> DelegatedCredential:
        previous = self.rows.get(channel_id)
        login = broadcaster_login or (previous.broadcaster_login if previous else "")
        credential = DelegatedCredential(
            channel_id=channel_id,
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
            broadcaster_login=login,
            updated_at=datetime.now(UTC),
        )
        self.rows[channel_id] = credential
        self.upserts += 1
        return credential


class GalleryStore:
    """Photos, comments and ledger entries shared by the fake repositories."""

    def __init__(self) -> None:
        self.photos: dict[int, Photo] = {}
        self.comments: dict[int, Comment] = {}
        self.entries: dict[str, LedgerEntry] = {}
        self._ids = itertools.count(1)

    def add_photo(self, channel_id: str = CHANNEL_ID, title: str = "") -> Photo:
        photo_id = next(self._ids)
        photo = Photo(
            id=photo_id,
            channel_id=channel_id,
            url=f"https://cdn.example.com/{photo_id}.jpg",
            title=title,
            created_at=datetime.now(UTC),
        )
        self.photos[photo_id] = photo
        return photo

    def add_comment(
        self, photo: Photo, user_id: str, message: str, hidden: bool = False
    ) -> Comment:
        comment = Comment(
            id=next(self._ids),
            channel_id=photo.channel_id,
            photo_id=photo.id,
            user_id=user_id,
            message=message,
            display_name=f"user{user_id}",
            hidden=hidden,
            created_at=datetime.now(UTC),
        )
        self.comments[comment.id] = comment
        return comment

    def insert_entry(self, **fields) -> tuple[LedgerEntry, bool]:
        existing = self.entries.get(fields["receipt_key"])
        if existing is not None:
            return existing, False
        entry = LedgerEntry(id=next(self._ids), applied_at=datetime.now(UTC), **fields)
        self.entries[entry.receipt_key] = entry
        return entry, True

    def photo_in_channel(self, channel_id: str, photo_id: int) -> Photo | None:
        photo = self.photos.get(photo_id)
        if photo is None or photo.channel_id != channel_id:
            return None
        return photo


class FakeLedgerRepository:
    def __init__(self, store: GalleryStore) -> None:
        self.store = store

    async def get_entry_by_receipt_key(self, receipt_key: str) -> LedgerEntry | None:
        return self.store.entries.get(receipt_key)

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
        if receipt_key in self.store.entries:
            return self.store.entries[receipt_key], False
        photo = self.store.photo_in_channel(channel_id, photo_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        entry, created = self.store.insert_entry(
            channel_id=channel_id,
            kind=LedgerKind.TIP,
            receipt_key=receipt_key,
            product_sku=product_sku,
            payer_id=payer_id,
            units=units,
            photo_id=photo_id,
            transaction_id=transaction_id,
        )
        photo.tip_units_total += units
        photo.likes_count += 1
        return entry, created

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
        if receipt_key in self.store.entries:
            return self.store.entries[receipt_key], False
        photo = self.store.photo_in_channel(channel_id, photo_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        entry, created = self.store.insert_entry(
            channel_id=channel_id,
            kind=LedgerKind.COMMENT_UNLOCK,
            receipt_key=receipt_key,
            product_sku=product_sku,
            payer_id=payer_id,
            units=units,
            photo_id=photo_id,
            transaction_id=transaction_id,
        )
        comment = self.store.add_comment(photo, payer_id, message)
        comment.display_name = display_name
        comment.ledger_entry_id = entry.id
        return entry, created


class FakeGalleryRepository:
    def __init__(self, store: GalleryStore) -> None:
        self.store = store

    async def list_photos(self, channel_id: str) -> list[Photo]:
        return [p for p in self.store.photos.values() if p.channel_id == channel_id]

    async def list_comments(
        self, channel_id: str, photo_id: int | None = None, limit: int = 50
    ) -> list[Comment]:
        comments = [
            c
            for c in self.store.comments.values()
            if c.channel_id == channel_id
            and not c.hidden
            and (photo_id is None or c.photo_id == photo_id)
        ]
        return sorted(comments, key=lambda c: c.id, reverse=True)[:limit]

    async def set_comment_hidden(
        self, channel_id: str, comment_id: int, hidden: bool
    ) -> Comment | None:
        comment = self.store.comments.get(comment_id)
        if comment is None or comment.channel_id != channel_id:
            return None
        comment.hidden = hidden
        return comment


class FakeTwitchAPI:
    """Records calls; responses are configured per test."""

    def __init__(self) -> None:
        self.refresh_results: list[TokenResult] = []
        self.refresh_calls: list[str] = []
        self.subscribers: set[tuple[str, str]] = set()
        self.subscription_error: Exception | None = None
        self.subscription_calls = 0
        self.users: dict[str, dict] = {}
        self.user_lookups: list[str | None] = []
        self.chat_messages: list[tuple[str, str]] = []
        self.pubsub_messages: list[tuple[str, dict]] = []
        self.exchange_result = TokenResult(
            success=True, access_token="new-access", refresh_token="new-refresh", expires_in=14400
        )

    def generate_oauth_url(self, state: str | None = None) -> str:
        return f"https://id.twitch.tv/oauth2/authorize?state={state}"

    async def exchange_code_for_token(self, code: str) -> TokenResult:
        return self.exchange_result

    async def refresh_access_token(self, refresh_token: str) -> TokenResult:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(0)
        if self.refresh_results:
            return self.refresh_results.pop(0)
        return TokenResult(
            success=True, access_token="refreshed-access", refresh_token="refreshed-refresh",
            expires_in=14400,
        )

    async def get_user(self, access_token: str, user_id: str | None = None) -> dict | None:
        self.user_lookups.append(user_id)
        return self.users.get(user_id or "me")

    async def check_user_subscription(
        self, broadcaster_id: str, user_id: str, access_token: str
    ) -> bool:
        self.subscription_calls += 1
        if self.subscription_error is not None:
            raise self.subscription_error
        return (broadcaster_id, user_id) in self.subscribers

    async def send_chat_message(
        self, broadcaster_id: str, sender_id: str, message: str, access_token: str
    ) -> bool:
        self.chat_messages.append((broadcaster_id, message))
        return True

    async def send_extension_pubsub(
        self, broadcaster_id: str, message: dict, external_jwt: str
    ) -> bool:
        self.pubsub_messages.append((broadcaster_id, message))
        return True

    async def close(self) -> None:
        pass


# --- Fixtures ---


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        extension_client_id="ext-client",
        extension_secret=SECRET_B64,
        client_id="oauth-client",
        client_secret="oauth-secret",
        database_url="postgresql://localhost/test",
        environment="test",
    )


@pytest.fixture
def runner() -> TaskRunner:
    return TaskRunner()


@pytest.fixture
def twitch() -> FakeTwitchAPI:
    return FakeTwitchAPI()


@pytest.fixture
def credential_repo() -> FakeCredentialRepository:
    return FakeCredentialRepository()


@pytest.fixture
def store() -> GalleryStore:
    return GalleryStore()


@pytest.fixture
def connected_channel(credential_repo: FakeCredentialRepository) -> DelegatedCredential:
    """A broadcaster credential that is still fresh."""
    credential = DelegatedCredential(
        channel_id=CHANNEL_ID,
        access_token="stored-access",
        refresh_token="stored-refresh",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
        broadcaster_login="streamer",
    )
    credential_repo.rows[CHANNEL_ID] = credential
    return credential


@pytest.fixture
def token_store(credential_repo, twitch) -> DelegatedTokenStore:
    return DelegatedTokenStore(credential_repo, twitch, expiry_margin=60)


@pytest.fixture
def hub(runner) -> NotificationHub:
    return NotificationHub(runner, queue_size=4)


@pytest.fixture
def announcer(token_store, twitch) -> ChatAnnouncer:
    return ChatAnnouncer(token_store, twitch)


@pytest.fixture
def ledger_service(store, hub, runner, announcer) -> LedgerService:
    return LedgerService(
        verifier=ReceiptVerifier(SECRET),
        repo=FakeLedgerRepository(store),
        hub=hub,
        runner=runner,
        announcer=announcer,
        comment_unlock_sku="COMMENT_500",
        comment_max_length=200,
    )


@pytest.fixture
def engine(settings, runner, twitch, token_store, store, hub, announcer) -> Engine:
    verifier = SessionVerifier(SECRET)
    return Engine(
        settings=settings,
        runner=runner,
        twitch_api=twitch,  # type: ignore[arg-type]
        session_verifier=verifier,
        token_store=token_store,
        entitlement=EntitlementResolver(token_store, twitch, cache_ttl=60),  # type: ignore[arg-type]
        announcer=announcer,
        hub=hub,
        ledger=LedgerService(
            verifier=ReceiptVerifier(SECRET),
            repo=FakeLedgerRepository(store),  # type: ignore[arg-type]
            hub=hub,
            runner=runner,
            announcer=announcer,
            announce_tips=False,
        ),
        gallery=FakeGalleryRepository(store),  # type: ignore[arg-type]
    )


@pytest.fixture
def app(settings: Settings, engine: Engine) -> FastAPI:
    """App with the engine pre-wired; the DB lifespan is never entered."""
    app = create_app(settings)
    app.state.engine = engine
    return app


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)

