"""DesignHub account service — login, token refresh and the current user.

Login upserts the user row for the verified identity.  When the identity's
email belongs to a placeholder created by an invitation, the placeholder is
claimed: its memberships move to the real user id and the row takes over the
real identity.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.auth.tokens import (
    TokenError,
    create_access_token,
    create_refresh_token,
    validate_token,
)
from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.errors import ConflictError, DesignHubError, NotFoundError, UnauthorizedError
from designhub.models.designhub import LoginResponse, RefreshResponse, UserResponse
from designhub.services.identity import IdentityClaim, IdentityVerifier
from designhub.services.responses import to_user_response

logger = logging.getLogger(__name__)


def _issue_pair(user_id: str) -> tuple[str, str]:
    try:
        return create_access_token(user_id), create_refresh_token(user_id)
    except TokenError as e:
        logger.error(f"❌ Cannot issue session tokens: {e}")
        raise DesignHubError("Session tokens are not configured")


async def _move_memberships(session: AsyncSession, from_user_id: str, to_user_id: str) -> int:
    """Re-point ``from_user_id``'s memberships at ``to_user_id``.

    Memberships in projects ``to_user_id`` already belongs to are dropped.
    """
    owned = select(db.DesignTeamMember.project_id).where(db.DesignTeamMember.user_id == to_user_id)
    taken = set((await session.execute(owned)).scalars())
    stmt = select(db.DesignTeamMember).where(db.DesignTeamMember.user_id == from_user_id)
    moved = 0
    for member in (await session.execute(stmt)).scalars():
        if member.project_id in taken:
            await session.delete(member)
        else:
            member.user_id = to_user_id
            moved += 1
    await session.execute(
        update(db.DesignMergeRequest)
        .where(db.DesignMergeRequest.created_by == from_user_id)
        .values(created_by=to_user_id)
    )
    return moved


async def login(
    session: AsyncSession, verifier: IdentityVerifier, claim: IdentityClaim
) -> LoginResponse:
    """Verify ``claim``, upsert the user and issue an access/refresh pair.

    Raises:
        UnauthorizedError: the verifier rejected the claim.
        ConflictError: the email belongs to another registered account.
    """
    verified = await verifier.verify(claim)
    email = verified.email.strip().lower()
    now = datetime.now(timezone.utc)

    user = (
        await session.execute(select(User).where(User.user_id == verified.user_id))
    ).scalar_one_or_none()
    holder = (await session.execute(select(User).where(User.email == email))).scalar_one_or_none()

    if holder is not None and (user is None or holder.id != user.id):
        if not holder.is_placeholder:
            logger.warning(f"⚠️ Login for {verified.user_id} refused: {email} belongs to {holder.user_id}")
            raise ConflictError("Email is already registered to another account")
        moved = await _move_memberships(session, holder.user_id, verified.user_id)
        logger.info(f"Claimed placeholder {holder.user_id} for {verified.user_id} ({moved} membership(s))")
        if user is None:
            holder.user_id = verified.user_id
            user = holder
        else:
            await session.delete(holder)
            await session.flush()

    if user is None:
        user = User(user_id=verified.user_id, email=email, name=verified.name)
        session.add(user)
        logger.info(f"✅ Registered user {verified.user_id}")

    user.email = email
    user.name = verified.name
    if verified.avatar_url:
        user.avatar_url = verified.avatar_url
    user.last_login_at = now
    await session.flush()
    await session.commit()

    token, refresh_token = _issue_pair(user.user_id)
    logger.info(f"✅ Login for {user.user_id}")
    return LoginResponse(token=token, refresh_token=refresh_token, user=to_user_response(user))


async def refresh(session: AsyncSession, refresh_token: str) -> RefreshResponse:
    """Trade a valid refresh token for a new access/refresh pair."""
    try:
        claims = validate_token(refresh_token, "refresh")
    except TokenError as e:
        logger.warning(f"⚠️ Refresh rejected: {e}")
        raise UnauthorizedError("Invalid or expired refresh token")

    user = (
        await session.execute(select(User).where(User.user_id == claims["sub"]))
    ).scalar_one_or_none()
    if user is None:
        raise UnauthorizedError("User not found")

    token, new_refresh = _issue_pair(user.user_id)
    return RefreshResponse(token=token, refresh_token=new_refresh)


async def me(session: AsyncSession, user_id: str) -> UserResponse:
    user = (await session.execute(select(User).where(User.user_id == user_id))).scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return to_user_response(user)
