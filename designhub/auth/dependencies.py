"""
FastAPI Authentication Dependencies

Provides dependency injection for protecting endpoints with access token
validation.  Failures raise :class:`~designhub.errors.UnauthorizedError` so the
response carries the same ``{"error": {...}}`` envelope as every other error.
"""
from __future__ import annotations

import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from designhub.auth.tokens import TokenClaims, TokenError, validate_token
from designhub.errors import UnauthorizedError

logger = logging.getLogger(__name__)

# HTTPBearer extracts the token from "Authorization: Bearer <token>" header
# auto_error=False allows us to provide custom error messages
security = HTTPBearer(auto_error=False)


async def require_valid_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> TokenClaims:
    """
    FastAPI dependency that validates access tokens.

    Checks:
    1. Token is present
    2. Token signature is valid (access secret)
    3. Token has not expired
    4. Token is an access token, not a refresh token

    Usage:
        @router.get("/protected")
        async def protected_endpoint(
            claims: TokenClaims = Depends(require_valid_token)
        ):
            user_id = claims["sub"]

    Raises:
        UnauthorizedError: If the token is missing, invalid, or expired
    """
    if credentials is None:
        logger.warning("Access attempt without token")
        raise UnauthorizedError("Access token required")

    try:
        claims = validate_token(credentials.credentials, "access")
    except TokenError as e:
        logger.warning("Invalid token: %s", e)
        raise UnauthorizedError("Invalid or expired token")

    logger.debug(f"Valid token for user {claims['sub'][:8]}..., expires at {claims['exp']}")
    return claims


async def get_current_user_id(
    claims: TokenClaims = Depends(require_valid_token),
) -> str:
    """Dependency returning the authenticated actor's user id."""
    return claims["sub"]
