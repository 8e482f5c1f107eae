"""Tests for JWT token management."""

import jwt
import pytest

from wastewatch.auth.jwt import create_access_token, create_refresh_token, verify_token


class TestAccessToken:
    def test_create_and_verify(self):
        token = create_access_token("user-1", "official")
        payload = verify_token(token, expected_type="access")
        assert payload["sub"] == "user-1"
        assert payload["role"] == "official"
        assert payload["auth_provider"] == "email"
        assert payload["type"] == "access"
        assert payload["iss"] == "wastewatch"

    def test_wrong_type_rejected(self):
        token = create_refresh_token("user-1", "resident", token_id="abc")
        with pytest.raises(jwt.InvalidTokenError, match="Expected token type"):
            verify_token(token, expected_type="access")

    def test_foreign_signature_rejected(self):
        payload = verify_token(create_access_token("user-1", "resident"), expected_type="access")
        forged = jwt.encode(payload, "another-secret-key-with-32-bytes-or-more", algorithm="HS256")
        with pytest.raises(jwt.InvalidSignatureError):
            verify_token(forged, expected_type="access")


class TestRefreshToken:
    def test_create_includes_jti(self):
        token = create_refresh_token("user-2", "resident", "phone", token_id="abc-123")
        payload = verify_token(token, expected_type="refresh")
        assert payload["jti"] == "abc-123"
        assert payload["auth_provider"] == "phone"
