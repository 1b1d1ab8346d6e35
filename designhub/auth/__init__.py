"""
DesignHub Authentication Module

Provides JWT-based access/refresh token generation and validation.
"""
from designhub.auth.tokens import (
    create_access_token,
    create_refresh_token,
    validate_token,
    TokenClaims,
    TokenError,
)
from designhub.auth.dependencies import require_valid_token, get_current_user_id

__all__ = [
    "create_access_token",
    "create_refresh_token",
    "validate_token",
    "TokenClaims",
    "TokenError",
    "require_valid_token",
    "get_current_user_id",
]
