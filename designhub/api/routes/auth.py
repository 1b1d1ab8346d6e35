"""Authentication endpoints.

Endpoint summary:
  POST /auth/login    — exchange a verified identity for an access/refresh pair
  POST /auth/refresh  — trade a refresh token for a new pair
  GET  /auth/me       — the authenticated user's profile

Login and refresh are rate limited per client address.
"""
# No "from __future__ import annotations": FastAPI resolves the signatures of
# slowapi-wrapped handlers in slowapi's module namespace.

import logging

from fastapi import APIRouter, Depends, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.auth.dependencies import get_current_user_id
from designhub.config import settings
from designhub.db import get_db
from designhub.models.designhub import (
    LoginRequest,
    LoginResponse,
    RefreshRequest,
    RefreshResponse,
    UserResponse,
)
from designhub.services import auth as auth_service
from designhub.services.identity import IdentityClaim, IdentityVerifier, get_identity_verifier

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth")

limiter = Limiter(key_func=get_remote_address)


@router.post(
    "/login",
    response_model=LoginResponse,
    operation_id="login",
    summary="Sign in with an identity-provider token",
)
@limiter.limit(settings.auth_rate_limit)
async def login(
    request: Request,
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
) -> LoginResponse:
    """Verify the identity claim, upsert the user and issue session tokens.

    Returns 401 if the identity provider rejects the claim.
    Returns 409 if the email belongs to another registered account.
    """
    claim = IdentityClaim(
        provider_token=body.adobe_token,
        user_id=body.user_id,
        email=body.email,
        name=body.name,
        avatar_url=body.avatar_url,
    )
    return await auth_service.login(db, verifier, claim)


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    operation_id="refreshToken",
    summary="Exchange a refresh token for a new token pair",
)
@limiter.limit(settings.auth_rate_limit)
async def refresh(
    request: Request,
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
) -> RefreshResponse:
    return await auth_service.refresh(db, body.refresh_token)


@router.get(
    "/me",
    response_model=UserResponse,
    operation_id="getMe",
    summary="Current user profile",
)
async def me(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
) -> UserResponse:
    return await auth_service.me(db, user_id)
