"""
Unit tests for session tokens and password handling.
"""

from datetime import timedelta
from uuid import uuid4

import jwt
import pytest

from app.core.auth import (
    create_session_token,
    decode_session_token,
    hash_password,
    password_problem,
    verify_password,
)
from app.core.errors import ApiError
from app.models import utcnow


class TestSessionTokens:
    """Tests for create_session_token / decode_session_token."""

    @pytest.mark.unit
    def test_roundtrip_returns_user_id(self):
        user_id = uuid4()
        assert decode_session_token(create_session_token(user_id)) == user_id

    @pytest.mark.unit
    def test_default_lifetime_is_24_hours(self):
        """exp is 24 hours after iat."""
        token = create_session_token(uuid4())
        claims = jwt.decode(token, options={"verify_signature": False})
        assert claims["exp"] - claims["iat"] == 24 * 3600

    @pytest.mark.unit
    def test_expired_token(self):
        """A token past its expiry reports TOKEN_EXPIRED."""
        token = create_session_token(uuid4(), now=utcnow() - timedelta(hours=25))
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.code == "TOKEN_EXPIRED"

    @pytest.mark.unit
    def test_tampered_signature(self):
        """Altering the signature reports INVALID_TOKEN."""
        header, payload, signature = create_session_token(uuid4()).split(".")
        flipped = ("A" if signature[0] != "A" else "B") + signature[1:]
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(f"{header}.{payload}.{flipped}")
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.unit
    def test_wrong_secret(self):
        token = jwt.encode(
            {"sub": str(uuid4()), "exp": utcnow() + timedelta(hours=1)},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(token)
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.unit
    @pytest.mark.parametrize("token", ["", "garbage", "a.b.c"])
    def test_malformed(self, token):
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(token)
        assert exc_info.value.code == "INVALID_TOKEN"

    @pytest.mark.unit
    def test_subject_must_be_uuid(self):
        """A correctly signed token with a non-UUID subject is invalid."""
        from app.core.config import get_settings

        token = jwt.encode(
            {"sub": "not-a-uuid", "exp": utcnow() + timedelta(hours=1)},
            get_settings().jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(ApiError) as exc_info:
            decode_session_token(token)
        assert exc_info.value.code == "INVALID_TOKEN"


class TestPasswords:
    """Tests for password rules and bcrypt hashing."""

    @pytest.mark.unit
    @pytest.mark.parametrize("password,ok", [
        ("12345", False),
        ("123456", True),
        ("a" * 72, True),
        ("a" * 73, False),
        ("é" * 36, True),
        ("é" * 37, False),
    ])
    def test_password_rules(self, password, ok):
        """At least 6 characters, at most 72 UTF-8 bytes."""
        assert (password_problem(password) is None) is ok

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hash_and_verify(self):
        hashed = await hash_password("secret123")
        assert hashed != "secret123"
        assert hashed.startswith("$2")
        assert await verify_password("secret123", hashed)
        assert not await verify_password("secret124", hashed)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_hashes_are_salted(self):
        assert await hash_password("secret123") != await hash_password("secret123")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_malformed_hash_does_not_verify(self):
        assert not await verify_password("secret123", "not-a-bcrypt-hash")
