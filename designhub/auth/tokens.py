"""
Session Token Generation and Validation

Issues the signed JWT pair handed out at login: a short-lived access token
(sent as ``Authorization: Bearer``) and a long-lived refresh token used only to
mint a new access token.  Each kind is signed with its own secret so a leaked
refresh secret cannot forge access tokens and vice versa.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Literal

import jwt
from typing_extensions import Required, TypedDict

from designhub.config import settings

TokenType = Literal["access", "refresh"]


class TokenError(Exception):
    """Raised when a token cannot be issued or fails validation."""
    pass


class TokenClaims(TypedDict, total=False):
    """Decoded JWT payload returned by :func:`validate_token`.

    ``type``, ``sub``, ``iat``, and ``exp`` are always present.
    """

    type: Required[str]
    sub: Required[str]
    iat: Required[int]
    exp: Required[int]


def _get_secret(token_type: TokenType) -> str:
    """Get the signing secret for ``token_type``, raising if not configured."""
    if token_type == "access":
        secret = settings.access_token_secret
        env_name = "DESIGNHUB_ACCESS_TOKEN_SECRET"
    else:
        secret = settings.refresh_token_secret
        env_name = "DESIGNHUB_REFRESH_TOKEN_SECRET"
    if not secret:
        raise TokenError(
            f"{env_name} not configured. "
            "Generate one with: openssl rand -hex 32"
        )
    return secret


def _issue(user_id: str, token_type: TokenType, lifetime: timedelta) -> str:
    if not user_id:
        raise TokenError("Cannot issue a token without a user id")
    secret = _get_secret(token_type)
    now = datetime.now(timezone.utc)
    payload = {
        "type": token_type,
        "sub": user_id,
        "iat": int(now.timestamp()),
        "exp": int((now + lifetime).timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=settings.token_algorithm)


def create_access_token(user_id: str, expires_days: int | None = None) -> str:
    """
    Generate a signed access token for ``user_id``.

    Args:
        user_id: The user's stable id (becomes the ``sub`` claim)
        expires_days: Override the configured access-token lifetime

    Returns:
        Signed JWT token string

    Raises:
        TokenError: If the secret is not configured or user_id is empty
    """
    days = expires_days if expires_days is not None else settings.access_token_expire_days
    return _issue(user_id, "access", timedelta(days=days))


def create_refresh_token(user_id: str, expires_days: int | None = None) -> str:
    """Generate a signed refresh token for ``user_id``."""
    days = expires_days if expires_days is not None else settings.refresh_token_expire_days
    return _issue(user_id, "refresh", timedelta(days=days))


def validate_token(token: str, token_type: TokenType = "access") -> TokenClaims:
    """
    Validate a token of the given kind and return its claims.

    Args:
        token: JWT token string
        token_type: ``"access"`` or ``"refresh"``; selects the secret and the
            expected ``type`` claim

    Returns:
        Decoded claims with keys: type, sub, iat, exp

    Raises:
        TokenError: If the token is invalid, expired, malformed, or of the
            wrong kind
    """
    secret = _get_secret(token_type)

    try:
        payload = jwt.decode(
            token,
            secret,
            algorithms=[settings.token_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")

    # jwt.decode() returns dict[str, Any]; narrow each claim explicitly so
    # malformed tokens raise clear errors instead of being coerced.
    raw_type = payload.get("type")
    if not isinstance(raw_type, str) or raw_type != token_type:
        raise TokenError("Invalid token type")

    raw_sub = payload.get("sub")
    if not isinstance(raw_sub, str) or not raw_sub:
        raise TokenError("Malformed token: sub must be a non-empty string")

    raw_iat = payload.get("iat", 0)
    raw_exp = payload.get("exp", 0)
    if not isinstance(raw_iat, int) or not isinstance(raw_exp, int):
        raise TokenError("Malformed token: iat/exp must be integers")

    return TokenClaims(type=raw_type, sub=raw_sub, iat=raw_iat, exp=raw_exp)
