"""Unit tests for JWT decoding and authentication utilities."""

from unittest.mock import patch

import pytest

from factories import ADMIN_ID, USER_ID, create_test_token
from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt, get_signing_key
from src.schemas.auth import TokenPayload


@pytest.fixture(autouse=True)
def fresh_signing_key():
    """Reload the signing key from settings for every test."""
    get_signing_key.cache_clear()
    yield
    get_signing_key.cache_clear()


class TestDecodeJWT:
    """Tests for decode_jwt function."""

    def test_decode_jwt_with_valid_token(self) -> None:
        """Test decode_jwt successfully decodes a valid token."""
        payload = decode_jwt(create_test_token())

        assert payload.sub == USER_ID
        assert payload.email == "customer@example.com"
        assert payload.role == "authenticated"
        assert payload.storefront_role == "USER"

    def test_decode_jwt_with_expired_token(self) -> None:
        """Test decode_jwt raises AuthError for expired token."""
        token = create_test_token(exp_offset=-3600)

        with pytest.raises(AuthError) as exc_info:
            decode_jwt(token)

        assert exc_info.value.code == AuthErrorCode.TOKEN_EXPIRED
        assert "expired" in exc_info.value.message.lower()

    def test_decode_jwt_with_invalid_signature(self) -> None:
        """Test decode_jwt raises AuthError for a token signed with another key."""
        token = create_test_token(secret="another-secret-that-is-long-enough-for-hs256")

        with pytest.raises(AuthError) as exc_info:
            decode_jwt(token)

        assert exc_info.value.code == AuthErrorCode.INVALID_SIGNATURE

    def test_decode_jwt_with_wrong_audience(self) -> None:
        token = create_test_token(audience="anon")

        with pytest.raises(AuthError) as exc_info:
            decode_jwt(token)

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    def test_decode_jwt_with_malformed_token(self) -> None:
        """Test decode_jwt raises AuthError for garbage input."""
        with pytest.raises(AuthError) as exc_info:
            decode_jwt("not-a-valid-jwt")

        assert exc_info.value.code == AuthErrorCode.INVALID_TOKEN

    @patch("src.api.middleware.auth.get_settings")
    def test_missing_signing_key(self, mock_settings: object) -> None:
        mock_settings.return_value.supabase_signing_key_jwk = ""

        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token())

        assert "not configured" in exc_info.value.message

    @patch("src.api.middleware.auth.get_settings")
    def test_malformed_signing_key(self, mock_settings: object) -> None:
        mock_settings.return_value.supabase_signing_key_jwk = "{not json"

        with pytest.raises(AuthError) as exc_info:
            decode_jwt(create_test_token())

        assert "Invalid signing key JWK format" in exc_info.value.message


class TestStorefrontRole:
    """Tests for the role carried in app_metadata."""

    def test_admin_role_from_app_metadata(self) -> None:
        payload = decode_jwt(create_test_token(sub=ADMIN_ID, role="ADMIN"))

        user = payload.to_user_context()

        assert str(user.user_id) == ADMIN_ID
        assert user.role == "ADMIN"
        assert user.is_admin is True

    def test_missing_role_defaults_to_user(self) -> None:
        payload = decode_jwt(create_test_token(role=None))

        assert payload.to_user_context().is_admin is False

    def test_role_is_case_insensitive(self) -> None:
        payload = TokenPayload(sub=USER_ID, app_metadata={"role": "super_admin"}, exp=2, iat=1)

        assert payload.storefront_role == "SUPER_ADMIN"
        assert payload.to_user_context().is_admin is True

    def test_supabase_role_claim_is_not_trusted(self) -> None:
        """Test that the top-level role claim never grants admin access."""
        payload = TokenPayload(sub=USER_ID, role="ADMIN", exp=2, iat=1)

        assert payload.to_user_context().is_admin is False
