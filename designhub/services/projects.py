"""DesignHub project service — project rows and their settings.

Boundary rules:
- Must NOT import FastAPI or route modules.
- Project creation stages the project, its primary branch and the creator's
  manager membership in one transaction.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from designhub.config import settings
from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.errors import ConflictError
from designhub.models.designhub import ProjectResponse, ProjectSettings, ProjectSettingsUpdate
from designhub.services import authz
from designhub.services.context import CommandContext
from designhub.services.locks import get_project_locks
from designhub.services.repository import create_primary_branch
from designhub.services.responses import to_project_response

logger = logging.getLogger(__name__)


def initial_settings(min_reviews: int | None = None) -> dict[str, object]:
    """Default settings document for a new project."""
    doc = db.default_project_settings()
    doc["branchProtection"]["minReviews"] = (
        settings.default_min_reviews if min_reviews is None else min_reviews
    )
    return doc


async def create_project(
    ctx: CommandContext, *, project_id: str, name: str, description: str = ""
) -> ProjectResponse:
    """Register a project; the creator becomes its first active manager.

    Raises:
        ConflictError: ``project_id`` is already taken.
    """
    async with get_project_locks().acquire(project_id):
        if await ctx.session.get(db.DesignProject, project_id) is not None:
            raise ConflictError(f"Project {project_id} already exists")

        stmt = select(User.email).where(User.user_id == ctx.actor_id)
        email = (await ctx.session.execute(stmt)).scalar_one_or_none() or ""

        now = datetime.now(tz=timezone.utc)
        project = db.DesignProject(
            project_id=project_id,
            name=name,
            description=description,
            owner_id=ctx.actor_id,
            settings=initial_settings(),
            created_at=now,
            updated_at=now,
        )
        ctx.session.add(project)
        await create_primary_branch(ctx.session, project_id, ctx.actor_id)
        ctx.session.add(
            db.DesignTeamMember(
                project_id=project_id,
                user_id=ctx.actor_id,
                email=email,
                role=authz.MANAGER,
                status="active",
                invited_by=ctx.actor_id,
                invited_at=now,
                joined_at=now,
            )
        )
        await ctx.session.flush()
        await ctx.session.commit()
    logger.info(f"✅ Created project {project_id} ('{name}') for {ctx.actor_id}")
    return to_project_response(project, role=authz.MANAGER)


async def list_projects(ctx: CommandContext) -> list[ProjectResponse]:
    """Projects the actor is an active member of, most recently updated first."""
    stmt = (
        select(db.DesignProject, db.DesignTeamMember.role)
        .join(db.DesignTeamMember, db.DesignTeamMember.project_id == db.DesignProject.project_id)
        .where(
            db.DesignTeamMember.user_id == ctx.actor_id,
            db.DesignTeamMember.status == "active",
        )
        .order_by(db.DesignProject.updated_at.desc())
    )
    rows = (await ctx.session.execute(stmt)).all()
    return [to_project_response(project, role=role) for project, role in rows]


async def get_project(ctx: CommandContext, project_id: str) -> ProjectResponse:
    project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    return to_project_response(project, role=authz.role_of(member))


async def update_project_settings(
    ctx: CommandContext, project_id: str, update: ProjectSettingsUpdate
) -> ProjectResponse:
    """Merge the supplied fields into the project's settings (manager only)."""
    async with get_project_locks().acquire(project_id):
        project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(member, "change project settings")

        current = ProjectSettings.model_validate(project.settings or {})
        merged = current.model_dump()
        for section, values in update.model_dump(exclude_unset=True, exclude_none=True).items():
            merged[section].update(values)
        new_settings = ProjectSettings.model_validate(merged)

        project.settings = new_settings.model_dump(by_alias=True)
        project.updated_at = datetime.now(tz=timezone.utc)
        await ctx.session.commit()
    logger.info(
        f"✅ Updated settings of project {project_id}: "
        f"{update.model_dump(exclude_unset=True, exclude_none=True)}"
    )
    return to_project_response(project, role=authz.role_of(member))
