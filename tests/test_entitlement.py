"""Tests for subscription entitlement resolution."""

from datetime import UTC, datetime, timedelta

import pytest

from conftest import CHANNEL_ID, OTHER_VIEWER_ID, VIEWER_ID
from core.errors import Forbidden, UpstreamUnavailable
from services import EntitlementResolver, Role, SessionClaims


def _claims(role: Role = Role.VIEWER, viewer_id: str | None = VIEWER_ID) -> SessionClaims:
    return SessionClaims(
        channel_id=CHANNEL_ID,
        opaque_viewer_id="U1",
        role=role,
        expires_at=datetime.now(UTC) + timedelta(minutes=5),
        viewer_id=viewer_id,
    )


@pytest.fixture
def resolver(token_store, twitch) -> EntitlementResolver:
    return EntitlementResolver(token_store, twitch, cache_ttl=60)


class TestResolve:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("role", [Role.BROADCASTER, Role.MODERATOR])
    async def test_staff_bypass_without_upstream_call(self, resolver, twitch, role):
        entitlement = await resolver.resolve(CHANNEL_ID, _claims(role=role, viewer_id=None))

        assert entitlement.is_entitled
        assert twitch.subscription_calls == 0

    @pytest.mark.asyncio
    async def test_no_shared_identity_is_never_entitled(self, resolver, twitch, connected_channel):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))

        entitlement = await resolver.resolve(CHANNEL_ID, _claims(viewer_id=None))

        assert not entitlement.is_entitled
        assert twitch.subscription_calls == 0

    @pytest.mark.asyncio
    async def test_subscriber(self, resolver, twitch, connected_channel):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))

        entitlement = await resolver.resolve(CHANNEL_ID, _claims())

        assert entitlement.is_entitled
        assert entitlement.role == Role.VIEWER

    @pytest.mark.asyncio
    async def test_non_subscriber(self, resolver, twitch, connected_channel):
        entitlement = await resolver.resolve(CHANNEL_ID, _claims(viewer_id=OTHER_VIEWER_ID))
        assert not entitlement.is_entitled

    @pytest.mark.asyncio
    async def test_other_channel_is_not_entitled(self, resolver, twitch, connected_channel):
        twitch.subscribers.add(("other", VIEWER_ID))
        entitlement = await resolver.resolve("other", _claims(role=Role.BROADCASTER))
        assert not entitlement.is_entitled

    @pytest.mark.asyncio
    async def test_fails_closed_without_credential(self, resolver, twitch):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))

        entitlement = await resolver.resolve(CHANNEL_ID, _claims())

        assert not entitlement.is_entitled

    @pytest.mark.asyncio
    async def test_fails_closed_on_upstream_error(self, resolver, twitch, connected_channel):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))
        twitch.subscription_error = UpstreamUnavailable()

        entitlement = await resolver.resolve(CHANNEL_ID, _claims())

        assert not entitlement.is_entitled


class TestCaching:
    @pytest.mark.asyncio
    async def test_positive_answer_is_cached(self, resolver, twitch, connected_channel):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))

        await resolver.resolve(CHANNEL_ID, _claims())
        await resolver.resolve(CHANNEL_ID, _claims())

        assert twitch.subscription_calls == 1

    @pytest.mark.asyncio
    async def test_negative_answer_is_not_cached(self, resolver, twitch, connected_channel):
        assert not (await resolver.resolve(CHANNEL_ID, _claims())).is_entitled

        # Viewer subscribes; the very next check sees it
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))
        assert (await resolver.resolve(CHANNEL_ID, _claims())).is_entitled
        assert twitch.subscription_calls == 2

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, resolver, twitch, connected_channel):
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))
        twitch.subscription_error = UpstreamUnavailable()
        assert not (await resolver.resolve(CHANNEL_ID, _claims())).is_entitled

        twitch.subscription_error = None
        assert (await resolver.resolve(CHANNEL_ID, _claims())).is_entitled

    @pytest.mark.asyncio
    async def test_cache_disabled(self, token_store, twitch, connected_channel):
        resolver = EntitlementResolver(token_store, twitch, cache_ttl=0)
        twitch.subscribers.add((CHANNEL_ID, VIEWER_ID))

        await resolver.resolve(CHANNEL_ID, _claims())
        await resolver.resolve(CHANNEL_ID, _claims())

        assert twitch.subscription_calls == 2


class TestRequire:
    @pytest.mark.asyncio
    async def test_identity_required(self, resolver):
        with pytest.raises(Forbidden) as exc:
            await resolver.require(CHANNEL_ID, _claims(viewer_id=None))
        assert exc.value.error_code == "identity_required"

    @pytest.mark.asyncio
    async def test_sub_only(self, resolver, connected_channel):
        with pytest.raises(Forbidden) as exc:
            await resolver.require(CHANNEL_ID, _claims())
        assert exc.value.error_code == "sub_only"
        assert exc.value.status_code == 403
