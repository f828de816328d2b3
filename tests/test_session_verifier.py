"""Tests for Extension session token verification."""

from datetime import UTC, datetime, timedelta

import jwt
import pytest

from conftest import CHANNEL_ID, SECRET, VIEWER_ID, make_session_token
from core.errors import Unauthenticated
from services import Role, SessionVerifier
from services.session_verifier import extract_bearer


@pytest.fixture
def verifier() -> SessionVerifier:
    return SessionVerifier(SECRET)


class TestVerify:
    def test_valid_viewer_token(self, verifier):
        claims = verifier.verify(f"Bearer {make_session_token()}")

        assert claims.channel_id == CHANNEL_ID
        assert claims.viewer_id == VIEWER_ID
        assert claims.role == Role.VIEWER
        assert claims.has_shared_identity
        assert claims.expires_at > datetime.now(UTC)

    def test_bare_token_is_accepted(self, verifier):
        claims = verifier.verify(make_session_token(role="broadcaster"))
        assert claims.role == Role.BROADCASTER
        assert claims.role.is_staff

    def test_viewer_without_shared_identity(self, verifier):
        claims = verifier.verify(make_session_token(user_id=None))
        assert claims.viewer_id is None
        assert not claims.has_shared_identity
        assert claims.opaque_viewer_id == "U2002"

    @pytest.mark.parametrize("credential", [None, "", "Bearer", "Basic abc def"])
    def test_missing_or_malformed_header(self, verifier, credential):
        with pytest.raises(Unauthenticated):
            verifier.verify(credential)

    def test_expired_token(self, verifier):
        with pytest.raises(Unauthenticated):
            verifier.verify(make_session_token(expires_in=-10))

    def test_wrong_secret(self, verifier):
        with pytest.raises(Unauthenticated):
            verifier.verify(make_session_token(secret=b"someone-else"))

    def test_other_hmac_algorithm_is_rejected(self, verifier):
        with pytest.raises(Unauthenticated):
            verifier.verify(make_session_token(algorithm="HS512"))

    def test_unsigned_token_is_rejected(self, verifier):
        payload = {
            "exp": datetime.now(UTC) + timedelta(minutes=5),
            "channel_id": CHANNEL_ID,
            "opaque_user_id": "U1",
            "role": "broadcaster",
        }
        token = jwt.encode(payload, None, algorithm="none")
        with pytest.raises(Unauthenticated):
            verifier.verify(token)

    def test_token_without_exp_is_rejected(self, verifier):
        token = jwt.encode(
            {"channel_id": CHANNEL_ID, "opaque_user_id": "U1", "role": "viewer"},
            SECRET,
            algorithm="HS256",
        )
        with pytest.raises(Unauthenticated):
            verifier.verify(token)

    def test_missing_channel_is_rejected(self, verifier):
        with pytest.raises(Unauthenticated):
            verifier.verify(make_session_token(channel_id=""))

    def test_external_role_is_not_a_session(self, verifier):
        with pytest.raises(Unauthenticated):
            verifier.verify(make_session_token(role="external"))

    def test_error_detail_is_coarse(self, verifier):
        with pytest.raises(Unauthenticated) as exc:
            verifier.verify(make_session_token(secret=b"forged"))
        assert exc.value.status_code == 401
        assert exc.value.error_code == "invalid_token"


class TestExternalToken:
    def test_signs_broadcast_permissions(self, verifier):
        token = verifier.sign_external_token("owner-1", channel_id=CHANNEL_ID)
        payload = jwt.decode(token, SECRET, algorithms=["HS256"])

        assert payload["role"] == "external"
        assert payload["user_id"] == "owner-1"
        assert payload["channel_id"] == CHANNEL_ID
        assert payload["pubsub_perms"] == {"send": ["broadcast"]}


def test_extract_bearer():
    assert extract_bearer("Bearer abc") == "abc"
    assert extract_bearer("bearer abc") == "abc"
    assert extract_bearer("abc") == "abc"
    assert extract_bearer(None) is None


def test_empty_secret_is_a_configuration_error():
    with pytest.raises(ValueError):
        SessionVerifier(b"")
