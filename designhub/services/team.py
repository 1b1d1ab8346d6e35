"""DesignHub team service — memberships, invitations and roles.

Boundary rules:
- Must NOT import FastAPI or route modules.
- Only this module and ``designhub.services.auth`` write
  ``designhub_team_members`` rows.

Invariant: a project always keeps at least one active manager.  Demoting or
removing the last one is refused with CONFLICT.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.config import settings
from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.errors import ConflictError, ExpiredError, ForbiddenError, NotFoundError
from designhub.models.designhub import InviteMemberResponse, TeamMemberResponse
from designhub.services import authz
from designhub.services.context import CommandContext
from designhub.services.events import EventKind
from designhub.services.ids import new_invitation_token, new_placeholder_user_id
from designhub.services.locks import get_project_locks
from designhub.services.notifier import notify_invitation
from designhub.services.responses import to_team_member_response, wire

logger = logging.getLogger(__name__)

# Placeholder users added without an address get one in this domain.
PLACEHOLDER_EMAIL_DOMAIN = "users.noreply.designhub"


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime(timezone=True) values back naive.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


async def _user_by_id(session: AsyncSession, user_id: str) -> User | None:
    return (await session.execute(select(User).where(User.user_id == user_id))).scalar_one_or_none()


async def _user_by_email(session: AsyncSession, email: str) -> User | None:
    stmt = select(User).where(User.email == email.strip().lower())
    return (await session.execute(stmt)).scalar_one_or_none()


async def _placeholder_user(session: AsyncSession, email: str | None, name: str | None) -> User:
    user_id = new_placeholder_user_id()
    address = email.strip().lower() if email else f"{user_id}@{PLACEHOLDER_EMAIL_DOMAIN}"
    user = User(user_id=user_id, email=address, name=name or address.split("@")[0])
    session.add(user)
    logger.info(f"Created placeholder user {user_id} for {address}")
    return user


async def _active_manager_count(session: AsyncSession, project_id: str) -> int:
    stmt = select(func.count()).select_from(db.DesignTeamMember).where(
        db.DesignTeamMember.project_id == project_id,
        db.DesignTeamMember.status == "active",
        db.DesignTeamMember.role.in_([authz.MANAGER, "owner", "admin"]),
    )
    return int((await session.execute(stmt)).scalar_one())


async def _ensure_not_last_manager(
    session: AsyncSession, member: db.DesignTeamMember, action: str
) -> None:
    if member.status != "active" or not authz.is_manager(member):
        return
    if await _active_manager_count(session, member.project_id) <= 1:
        logger.warning(
            f"⚠️ Refused to {action} {member.user_id}: last active manager of {member.project_id}"
        )
        raise ConflictError(f"Cannot {action} the last active manager of the project")


async def _get_member(
    session: AsyncSession, project_id: str, user_id: str
) -> db.DesignTeamMember:
    member = await authz.find_member(session, project_id, user_id)
    if member is None:
        raise NotFoundError("Team member not found")
    return member


async def _member_response(
    session: AsyncSession, member: db.DesignTeamMember
) -> TeamMemberResponse:
    return to_team_member_response(member, await _user_by_id(session, member.user_id))


async def list_team_members(ctx: CommandContext, project_id: str) -> list[TeamMemberResponse]:
    """Members of every status, newest invitation first, with their user profile."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    stmt = (
        select(db.DesignTeamMember, User)
        .outerjoin(User, User.user_id == db.DesignTeamMember.user_id)
        .where(db.DesignTeamMember.project_id == project_id)
        .order_by(db.DesignTeamMember.invited_at.desc())
    )
    rows = (await ctx.session.execute(stmt)).all()
    return [to_team_member_response(member, user) for member, user in rows]


async def invite_member(
    ctx: CommandContext, project_id: str, *, email: str, role: str = authz.DESIGNER
) -> InviteMemberResponse:
    """Create a pending membership and email the invitation link (manager only).

    Unknown addresses get a placeholder user that the invitee claims on
    first login.

    Raises:
        ConflictError: the address already belongs to a member of the project.
    """
    normalized_role = authz.normalize_role(role)
    async with get_project_locks().acquire(project_id):
        project, inviter = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(inviter, "invite team members")

        user = await _user_by_email(ctx.session, email)
        if user is None:
            user = await _placeholder_user(ctx.session, email, None)
        elif await authz.find_member(ctx.session, project_id, user.user_id) is not None:
            raise ConflictError("User is already a team member")

        token = new_invitation_token()
        member = db.DesignTeamMember(
            project_id=project_id,
            user_id=user.user_id,
            email=user.email,
            role=normalized_role,
            status="pending",
            invitation_token=token,
            invited_by=ctx.actor_id,
            invited_at=_utc_now(),
        )
        ctx.session.add(member)
        await ctx.session.flush()
        await ctx.session.commit()

        response = to_team_member_response(member, user)
        ctx.emit(project_id, EventKind.TEAM_MEMBER_ADDED, {"teamMember": wire(response)})
    logger.info(f"✅ Invited {user.email} to {project_id} as {normalized_role}")

    inviter_user = await _user_by_id(ctx.session, ctx.actor_id)
    await notify_invitation(
        ctx.notifier,
        user.email,
        project.name,
        inviter_user.name if inviter_user else "A teammate",
        token,
        project_id,
    )
    return InviteMemberResponse(member=response, invitation_token=token)


async def accept_invitation(ctx: CommandContext, token: str) -> TeamMemberResponse:
    """Activate the pending membership ``token`` was issued for.

    A membership held by a placeholder user is rebound to the actor.

    Raises:
        NotFoundError: no pending invitation carries this token.
        ExpiredError: the invitation is older than ``invitation_ttl_days``.
        ForbiddenError: the invitation was issued to a different real user.
        ConflictError: the actor is already a member of the project.
    """
    stmt = select(db.DesignTeamMember).where(
        db.DesignTeamMember.invitation_token == token,
        db.DesignTeamMember.status == "pending",
    )
    found = (await ctx.session.execute(stmt)).scalar_one_or_none()
    if found is None:
        raise NotFoundError("Invalid or expired invitation token")
    project_id = found.project_id

    async with get_project_locks().acquire(project_id):
        member = (await ctx.session.execute(stmt)).scalar_one_or_none()
        if member is None:
            raise NotFoundError("Invalid or expired invitation token")

        expires_at = _as_utc(member.invited_at) + timedelta(days=settings.invitation_ttl_days)
        if _utc_now() > expires_at:
            logger.warning(f"⚠️ Expired invitation for {member.email} to {project_id}")
            raise ExpiredError("This invitation has expired")

        if member.user_id != ctx.actor_id:
            holder = await _user_by_id(ctx.session, member.user_id)
            if holder is not None and not holder.is_placeholder:
                logger.warning(
                    f"⚠️ User {ctx.actor_id} tried to accept invitation issued to {member.user_id}"
                )
                raise ForbiddenError("This invitation was issued to another user")
            existing = await authz.find_member(ctx.session, project_id, ctx.actor_id)
            if existing is not None:
                raise ConflictError("You are already a member of this project")
            member.user_id = ctx.actor_id
            actor = await _user_by_id(ctx.session, ctx.actor_id)
            if actor is not None:
                member.email = actor.email

        member.status = "active"
        member.joined_at = _utc_now()
        member.invitation_token = None
        await ctx.session.commit()

        response = await _member_response(ctx.session, member)
        ctx.emit(project_id, EventKind.TEAM_MEMBER_UPDATED, {"teamMember": wire(response)})
    logger.info(f"✅ {ctx.actor_id} joined project {project_id}")
    return response


async def update_member_role(
    ctx: CommandContext, project_id: str, user_id: str, role: str
) -> TeamMemberResponse:
    new_role = authz.normalize_role(role)
    async with get_project_locks().acquire(project_id):
        _, actor = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(actor, "change member roles")
        member = await _get_member(ctx.session, project_id, user_id)
        if new_role != authz.MANAGER:
            await _ensure_not_last_manager(ctx.session, member, "demote")

        member.role = new_role
        await ctx.session.commit()
        response = await _member_response(ctx.session, member)
        ctx.emit(project_id, EventKind.TEAM_MEMBER_UPDATED, {"teamMember": wire(response)})
    logger.info(f"✅ {user_id} is now {new_role} in project {project_id}")
    return response


async def remove_member(ctx: CommandContext, project_id: str, user_id: str) -> None:
    async with get_project_locks().acquire(project_id):
        _, actor = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(actor, "remove team members")
        member = await _get_member(ctx.session, project_id, user_id)
        await _ensure_not_last_manager(ctx.session, member, "remove")

        response = await _member_response(ctx.session, member)
        await ctx.session.delete(member)
        await ctx.session.commit()
        payload = wire(response)
        payload["status"] = "inactive"
        ctx.emit(project_id, EventKind.TEAM_MEMBER_UPDATED, {"teamMember": payload, "removed": True})
    logger.info(f"✅ Removed {user_id} from project {project_id}")


async def add_designer(
    ctx: CommandContext, project_id: str, *, name: str, email: str | None = None
) -> TeamMemberResponse:
    """Add an active designer directly, without an invitation (manager only)."""
    async with get_project_locks().acquire(project_id):
        _, actor = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(actor, "add designers")

        user = await _user_by_email(ctx.session, email) if email else None
        if user is None:
            user = await _placeholder_user(ctx.session, email, name)
        elif await authz.find_member(ctx.session, project_id, user.user_id) is not None:
            raise ConflictError("User is already a team member")

        now = _utc_now()
        member = db.DesignTeamMember(
            project_id=project_id,
            user_id=user.user_id,
            email=user.email,
            role=authz.DESIGNER,
            status="active",
            invited_by=ctx.actor_id,
            invited_at=now,
            joined_at=now,
        )
        ctx.session.add(member)
        await ctx.session.flush()
        await ctx.session.commit()

        response = to_team_member_response(member, user)
        ctx.emit(project_id, EventKind.TEAM_MEMBER_ADDED, {"teamMember": wire(response)})
    logger.info(f"✅ Added designer {user.name} ({user.user_id}) to project {project_id}")
    return response
