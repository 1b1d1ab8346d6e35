"""
Tests for designhub.auth.tokens — JWT generation and validation.

Covers:
  1.  create_access_token / create_refresh_token — claims and lifetimes
  2.  validate_token — happy path, expiry, wrong kind, tampered signature
  3.  Malformed claims — rejected with TokenError
  4.  Secret not configured — raises cleanly

Secrets are set by the autouse ``_token_secrets`` fixture in conftest.py, so
these tests are hermetic.
"""
from __future__ import annotations

import time

import jwt
import pytest

from designhub.auth.tokens import (
    TokenError,
    create_access_token,
    create_refresh_token,
    validate_token,
)
from designhub.config import settings


def _sign(payload: dict[str, object], secret: str | None = None) -> str:
    return jwt.encode(payload, secret or settings.access_token_secret, algorithm="HS256")


# ===========================================================================
# 1. Issuing
# ===========================================================================


class TestIssue:

    def test_access_token_claims(self) -> None:
        before = int(time.time())
        claims = validate_token(create_access_token("U1"), "access")
        assert claims["type"] == "access"
        assert claims["sub"] == "U1"
        assert before <= claims["iat"] <= int(time.time())
        assert claims["exp"] - claims["iat"] == settings.access_token_expire_days * 86400

    def test_refresh_token_claims(self) -> None:
        claims = validate_token(create_refresh_token("U1"), "refresh")
        assert claims["type"] == "refresh"
        assert claims["exp"] - claims["iat"] == settings.refresh_token_expire_days * 86400

    def test_expiry_override(self) -> None:
        claims = validate_token(create_access_token("U1", expires_days=1))
        assert claims["exp"] - claims["iat"] == 86400

    def test_empty_user_id_refused(self) -> None:
        with pytest.raises(TokenError):
            create_access_token("")


# ===========================================================================
# 2. Validation
# ===========================================================================


class TestValidate:

    def test_expired_token(self) -> None:
        now = int(time.time())
        token = _sign({"type": "access", "sub": "U1", "iat": now - 100, "exp": now - 10})
        with pytest.raises(TokenError, match="expired"):
            validate_token(token)

    def test_refresh_token_is_not_an_access_token(self) -> None:
        with pytest.raises(TokenError):
            validate_token(create_refresh_token("U1"), "access")

    def test_access_token_is_not_a_refresh_token(self) -> None:
        with pytest.raises(TokenError):
            validate_token(create_access_token("U1"), "refresh")

    def test_type_claim_checked_even_with_right_secret(self) -> None:
        now = int(time.time())
        token = _sign(
            {"type": "refresh", "sub": "U1", "iat": now, "exp": now + 60},
            secret=settings.access_token_secret,
        )
        with pytest.raises(TokenError, match="type"):
            validate_token(token, "access")

    def test_tampered_signature(self) -> None:
        token = create_access_token("U1")
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[:-2]}xx"
        with pytest.raises(TokenError):
            validate_token(tampered)

    def test_garbage(self) -> None:
        with pytest.raises(TokenError):
            validate_token("not.a.jwt")


# ===========================================================================
# 3. Malformed claims
# ===========================================================================


class TestMalformedClaims:

    def test_missing_sub(self) -> None:
        now = int(time.time())
        token = _sign({"type": "access", "iat": now, "exp": now + 60})
        with pytest.raises(TokenError, match="sub"):
            validate_token(token)

    def test_non_string_sub(self) -> None:
        now = int(time.time())
        token = _sign({"type": "access", "sub": 42, "iat": now, "exp": now + 60})
        with pytest.raises(TokenError):
            validate_token(token)


# ===========================================================================
# 4. Configuration
# ===========================================================================


def test_missing_secret_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "access_token_secret", None)
    with pytest.raises(TokenError, match="DESIGNHUB_ACCESS_TOKEN_SECRET"):
        create_access_token("U1")


def test_missing_refresh_secret_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "refresh_token_secret", "")
    with pytest.raises(TokenError, match="DESIGNHUB_REFRESH_TOKEN_SECRET"):
        validate_token("whatever", "refresh")
