"""
Per-project authorization.

Every command that names a project resolves the actor's active membership
first; role predicates are then checked against that row.  Roles are stored as
``manager`` or ``designer``.  Legacy names still arriving from older clients
are folded into those two on input (``owner``/``admin`` → manager,
``viewer`` → designer).

Grants are logged at debug level, denials as warnings, both with the actor and
the resolved role.
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.db import designhub_models as db
from designhub.errors import ForbiddenError, InvalidInputError, NotFoundError

logger = logging.getLogger(__name__)

MANAGER = "manager"
DESIGNER = "designer"
ROLES: frozenset[str] = frozenset({MANAGER, DESIGNER})

_LEGACY_ROLES: dict[str, str] = {
    "owner": MANAGER,
    "admin": MANAGER,
    "viewer": DESIGNER,
}


def normalize_role(role: str) -> str:
    """Map a requested role onto the stored vocabulary."""
    value = role.strip().lower()
    value = _LEGACY_ROLES.get(value, value)
    if value not in ROLES:
        raise InvalidInputError(f"Unknown role '{role}'; expected manager or designer")
    return value


def role_of(member: db.DesignTeamMember) -> str:
    """The member's role in the stored vocabulary (tolerates legacy rows)."""
    return _LEGACY_ROLES.get(member.role, member.role)


def is_manager(member: db.DesignTeamMember) -> bool:
    return role_of(member) == MANAGER


def is_reviewer(member: db.DesignTeamMember) -> bool:
    return role_of(member) in ROLES


def may_write_branch(member: db.DesignTeamMember, branch: db.DesignBranch) -> bool:
    """Managers write any branch; others only branches they created or the primary one."""
    return is_manager(member) or branch.created_by == member.user_id or branch.is_primary


async def get_project(session: AsyncSession, project_id: str) -> db.DesignProject:
    project = await session.get(db.DesignProject, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")
    return project


async def find_member(
    session: AsyncSession, project_id: str, user_id: str
) -> db.DesignTeamMember | None:
    stmt = select(db.DesignTeamMember).where(
        db.DesignTeamMember.project_id == project_id,
        db.DesignTeamMember.user_id == user_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def resolve_member(
    session: AsyncSession, project_id: str, user_id: str
) -> db.DesignTeamMember:
    """Return the actor's active membership or raise FORBIDDEN."""
    member = await find_member(session, project_id, user_id)
    if member is None or member.status != "active":
        logger.warning(
            f"⚠️ Access denied: user={user_id} project={project_id} "
            f"role={member.role if member else 'none'} status={member.status if member else 'none'}"
        )
        raise ForbiddenError("You do not have access to this project")
    logger.debug(f"Access granted: user={user_id} project={project_id} role={role_of(member)}")
    return member


async def require_project_access(
    session: AsyncSession, project_id: str, user_id: str
) -> tuple[db.DesignProject, db.DesignTeamMember]:
    """Load the project (NOT_FOUND) and the actor's active membership (FORBIDDEN)."""
    project = await get_project(session, project_id)
    member = await resolve_member(session, project_id, user_id)
    return project, member


def require_manager(member: db.DesignTeamMember, action: str) -> None:
    if not is_manager(member):
        logger.warning(
            f"⚠️ Denied {action}: user={member.user_id} project={member.project_id} role={role_of(member)}"
        )
        raise ForbiddenError(f"Only managers can {action}")
    logger.debug(f"Granted {action}: user={member.user_id} role={role_of(member)}")


def require_branch_write(
    member: db.DesignTeamMember, branch: db.DesignBranch, action: str
) -> None:
    if not may_write_branch(member, branch):
        logger.warning(
            f"⚠️ Denied {action} on branch {branch.name}: user={member.user_id} "
            f"role={role_of(member)} branch_owner={branch.created_by}"
        )
        raise ForbiddenError(
            f"Only managers or the branch creator can {action} on '{branch.name}'"
        )
    logger.debug(f"Granted {action} on branch {branch.name}: user={member.user_id} role={role_of(member)}")
