"""Unit tests for JWT token handling and role checks.

Tests cover:
- Token creation with the expected claims
- Token decoding, expiry and tampering
- Missing JWT_SECRET configuration
- Role hierarchy
"""

import time

import jwt
import pytest

from audit_retention.auth.jwt import create_access_token, decode_token
from audit_retention.auth.roles import UserRole, has_permission

TEST_SECRET = "test-secret-key-256-bits-minimum-length-required-for-security"


class TestCreateAccessToken:
    """Test JWT token creation"""

    def test_token_contains_claims(self, monkeypatch):
        """Test token payload carries sub, role and email"""
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)

        token = create_access_token(user_id="admin-1", role="ADMIN", email="admin@library.test")

        payload = jwt.decode(token, options={"verify_signature": False})
        assert payload["sub"] == "admin-1"
        assert payload["role"] == "ADMIN"
        assert payload["email"] == "admin@library.test"
        assert payload["exp"] > payload["iat"]

    def test_expiry_from_environment(self, monkeypatch):
        """Test JWT_EXPIRY_MINUTES controls the exp claim"""
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
        monkeypatch.setenv("JWT_EXPIRY_MINUTES", "5")

        payload = decode_token(create_access_token(user_id="u", role="USER"))

        assert payload["exp"] - payload["iat"] == 300

    def test_missing_secret_raises(self, monkeypatch):
        """Test that token creation fails without JWT_SECRET"""
        monkeypatch.delenv("JWT_SECRET", raising=False)

        with pytest.raises(ValueError, match="JWT_SECRET"):
            create_access_token(user_id="u", role="USER")


class TestDecodeToken:
    """Test JWT token validation"""

    def test_round_trip(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)

        payload = decode_token(create_access_token(user_id="reader-7", role="USER"))

        assert payload["sub"] == "reader-7"

    def test_expired_token_rejected(self, monkeypatch):
        """Test that an expired token raises ExpiredSignatureError"""
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
        now = int(time.time())
        token = jwt.encode(
            {"sub": "u", "role": "ADMIN", "iat": now - 7200, "exp": now - 3600},
            TEST_SECRET,
            algorithm="HS256",
        )

        with pytest.raises(jwt.ExpiredSignatureError):
            decode_token(token)

    def test_wrong_secret_rejected(self, monkeypatch):
        """Test that a token signed with another secret is invalid"""
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)
        token = jwt.encode(
            {"sub": "u", "role": "ADMIN", "exp": int(time.time()) + 60},
            "another-secret-key-that-is-also-long-enough-for-hs256",
            algorithm="HS256",
        )

        with pytest.raises(jwt.InvalidTokenError):
            decode_token(token)

    def test_garbage_rejected(self, monkeypatch):
        monkeypatch.setenv("JWT_SECRET", TEST_SECRET)

        with pytest.raises(jwt.InvalidTokenError):
            decode_token("not.a.token")


class TestRoleHierarchy:
    """Test role permission checks"""

    @pytest.mark.parametrize("user_role, required, allowed", [
        (UserRole.ADMIN, UserRole.ADMIN, True),
        (UserRole.ADMIN, UserRole.USER, True),
        (UserRole.MODERATOR, UserRole.ADMIN, False),
        (UserRole.MODERATOR, UserRole.USER, True),
        (UserRole.USER, UserRole.ADMIN, False),
    ])
    def test_has_permission(self, user_role, required, allowed):
        assert has_permission(user_role, required) is allowed
