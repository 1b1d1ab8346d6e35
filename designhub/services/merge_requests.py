"""DesignHub merge-request engine — single point of DB access for merge requests.

This module is the ONLY place that touches the ``designhub_merge_requests``
table.  Route handlers delegate here; no business logic lives in routes.

Boundary rules:
- Must NOT import FastAPI or route modules.
- Status changes go through ``merge_request_state.next_status``; this module
  never assigns a status the state machine did not return.
- Snapshot and commit writes are delegated to ``designhub.services.repository``.

Review rules
------------
- Reviewers are seeded at creation: up to the approval threshold of active
  members, designers first, then managers, never the creator.
- A manager who reviews without being on the list is appended to it first.
  Anyone else who is not listed is refused.
- The creator may not approve, request changes on, or merge their own request.
- ``reviewers`` is an ordered list deduplicated by ``userId``; it is rebuilt
  and reassigned on every change so the JSON column is persisted.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select

from designhub.config import settings
from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.errors import ForbiddenError, InvalidInputError, NotFoundError
from designhub.models.designhub import MergeRequestResponse, ProjectSettings
from designhub.services import authz, repository
from designhub.services.context import CommandContext
from designhub.services.events import EventKind
from designhub.services.ids import next_merge_request_id
from designhub.services.locks import get_project_locks
from designhub.services.merge_request_state import (
    MergeRequestEvent,
    MergeRequestStatus,
    approval_threshold,
    next_status,
)
from designhub.services.notifier import (
    notify_changes_requested,
    notify_merge_request_approved,
    notify_merge_request_created,
)
from designhub.services.responses import (
    to_branch_response,
    to_merge_request_response,
    wire,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _project_settings(project: db.DesignProject) -> ProjectSettings:
    return ProjectSettings.model_validate(project.settings or {})


def _approved_count(reviewers: list[dict[str, Any]]) -> int:
    return sum(1 for r in reviewers if r.get("status") == "approved")


def _mr_url(project_id: str, number: int) -> str:
    return f"{settings.frontend_url.rstrip('/')}/projects/{project_id}/merge-requests/{number}"


async def _get_mr(ctx: CommandContext, project_id: str, number: int) -> db.DesignMergeRequest:
    stmt = select(db.DesignMergeRequest).where(
        db.DesignMergeRequest.project_id == project_id,
        db.DesignMergeRequest.merge_request_id == number,
    )
    mr = (await ctx.session.execute(stmt)).scalar_one_or_none()
    if mr is None:
        raise NotFoundError(f"Merge request #{number} not found")
    return mr


async def _email_of(ctx: CommandContext, project_id: str, user_id: str) -> str | None:
    member = await authz.find_member(ctx.session, project_id, user_id)
    if member is not None:
        return member.email
    stmt = select(User.email).where(User.user_id == user_id)
    return (await ctx.session.execute(stmt)).scalar_one_or_none()


def _refuse_self_action(mr: db.DesignMergeRequest, actor_id: str, action: str) -> None:
    if mr.created_by == actor_id:
        logger.warning(f"⚠️ Denied {action} on MR #{mr.merge_request_id}: user {actor_id} is its creator")
        raise ForbiddenError(f"You cannot {action} your own merge request")


def _with_review(
    mr: db.DesignMergeRequest,
    member: db.DesignTeamMember,
    status: str,
    comment: str | None = None,
) -> list[dict[str, Any]]:
    """Return a new reviewer list with ``member``'s review recorded.

    Managers absent from the list are appended; other non-reviewers are
    refused with FORBIDDEN.
    """
    reviewers = [dict(r) for r in mr.reviewers or []]
    entry = next((r for r in reviewers if r.get("userId") == member.user_id), None)
    if entry is None:
        if not authz.is_manager(member):
            logger.warning(
                f"⚠️ Denied review on MR #{mr.merge_request_id}: user={member.user_id} "
                f"role={authz.role_of(member)} is not a reviewer"
            )
            raise ForbiddenError("You are not a reviewer for this merge request")
        entry = {"userId": member.user_id, "status": "pending", "reviewedAt": None, "comment": None}
        reviewers.append(entry)
        logger.info(f"Added manager {member.user_id} as reviewer of MR #{mr.merge_request_id}")
    entry["status"] = status
    entry["reviewedAt"] = _utc_now().isoformat()
    if status == "requested_changes":
        entry["comment"] = comment
    return reviewers


async def _seed_reviewers(
    ctx: CommandContext, project_id: str, creator_id: str, limit: int
) -> list[db.DesignTeamMember]:
    stmt = (
        select(db.DesignTeamMember)
        .where(
            db.DesignTeamMember.project_id == project_id,
            db.DesignTeamMember.status == "active",
            db.DesignTeamMember.user_id != creator_id,
        )
        .order_by(db.DesignTeamMember.invited_at, db.DesignTeamMember.id)
    )
    members = [m for m in (await ctx.session.execute(stmt)).scalars() if authz.is_reviewer(m)]
    members.sort(key=lambda m: 0 if authz.role_of(m) == authz.DESIGNER else 1)
    return members[:limit]


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_merge_requests(
    ctx: CommandContext, project_id: str, *, status: str | None = None
) -> list[MergeRequestResponse]:
    """Return merge requests newest first; ``status`` of None or "all" means no filter."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    stmt = select(db.DesignMergeRequest).where(db.DesignMergeRequest.project_id == project_id)
    if status and status != "all":
        try:
            MergeRequestStatus(status)
        except ValueError:
            raise InvalidInputError(f"Unknown merge request status '{status}'")
        stmt = stmt.where(db.DesignMergeRequest.status == status)
    stmt = stmt.order_by(db.DesignMergeRequest.merge_request_id.desc())
    rows = (await ctx.session.execute(stmt)).scalars().all()
    return [to_merge_request_response(r) for r in rows]


async def get_merge_request(
    ctx: CommandContext, project_id: str, number: int
) -> MergeRequestResponse:
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    return to_merge_request_response(await _get_mr(ctx, project_id, number))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


async def create_merge_request(
    ctx: CommandContext,
    project_id: str,
    *,
    source_branch: str,
    target_branch: str,
    title: str,
    description: str = "",
) -> MergeRequestResponse:
    """Open a merge request from ``source_branch`` into ``target_branch``.

    Raises:
        InvalidInputError: source and target are the same branch.
        NotFoundError: either branch is missing or not active.
        ForbiddenError: a non-manager opens a request from a branch they did
            not create (primary branches are open to everyone).
        ConflictError: a concurrent request took the same number.
    """
    source_name = source_branch.strip()
    target_name = target_branch.strip()
    if source_name == target_name:
        raise InvalidInputError("Source and target branches cannot be the same")

    async with get_project_locks().acquire(project_id):
        project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        source = await repository.find_branch_by_name(ctx.session, project_id, source_name, active_only=True)
        target = await repository.find_branch_by_name(ctx.session, project_id, target_name, active_only=True)
        if source is None and target is None:
            raise NotFoundError(
                f"Both source branch '{source_name}' and target branch '{target_name}' not found"
            )
        if source is None:
            raise NotFoundError(f"Source branch '{source_name}' not found")
        if target is None:
            raise NotFoundError(f"Target branch '{target_name}' not found")

        if not (authz.is_manager(member) or source.created_by == ctx.actor_id or source.is_primary):
            logger.warning(
                f"⚠️ Denied MR from '{source_name}': user={ctx.actor_id} "
                f"role={authz.role_of(member)} branch_owner={source.created_by}"
            )
            raise ForbiddenError("You can only open merge requests from branches you created")

        protection = _project_settings(project).branch_protection
        seeded = await _seed_reviewers(
            ctx, project_id, ctx.actor_id, approval_threshold(protection.min_reviews)
        )
        number = await next_merge_request_id(ctx.session, project_id)
        now = _utc_now()
        mr = db.DesignMergeRequest(
            project_id=project_id,
            merge_request_id=number,
            source_branch=source_name,
            target_branch=target_name,
            title=title,
            description=description,
            status=MergeRequestStatus.OPEN.value,
            created_by=ctx.actor_id,
            reviewers=[
                {"userId": m.user_id, "status": "pending", "reviewedAt": None, "comment": None}
                for m in seeded
            ],
            stats={"filesChanged": 0, "componentsUpdated": 0},
            created_at=now,
            updated_at=now,
        )
        ctx.session.add(mr)
        await ctx.session.flush()
        await ctx.session.commit()
        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.MERGE_CREATED, {"mergeRequest": wire(response)})
    logger.info(
        f"✅ Created MR #{number} '{title}' ({source_name} → {target_name}) "
        f"with {len(seeded)} reviewer(s) in project {project_id}"
    )

    if _project_settings(project).notifications.on_merge_request:
        for reviewer in seeded:
            await notify_merge_request_created(
                ctx.notifier, reviewer.email, project.name, title, _mr_url(project_id, number)
            )
    return response


async def approve_merge_request(
    ctx: CommandContext, project_id: str, number: int
) -> MergeRequestResponse:
    """Record the actor's approval; flips to ``approved`` at the threshold."""
    async with get_project_locks().acquire(project_id):
        project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        mr = await _get_mr(ctx, project_id, number)
        _refuse_self_action(mr, ctx.actor_id, "approve")
        reviewers = _with_review(mr, member, "approved")

        protection = _project_settings(project).branch_protection
        previous = MergeRequestStatus(mr.status)
        status = next_status(
            previous,
            MergeRequestEvent.APPROVE,
            approved_count=_approved_count(reviewers),
            min_reviews=protection.min_reviews,
        )
        mr.reviewers = reviewers
        mr.status = status.value
        mr.updated_at = _utc_now()
        await ctx.session.commit()
        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.MERGE_APPROVED, {"mergeRequest": wire(response)})
    logger.info(
        f"✅ MR #{number} approved by {ctx.actor_id} "
        f"({response.approved_count}/{approval_threshold(protection.min_reviews)}, status={status.value})"
    )

    if status is MergeRequestStatus.APPROVED and previous is not MergeRequestStatus.APPROVED:
        creator_email = await _email_of(ctx, project_id, mr.created_by)
        if creator_email:
            await notify_merge_request_approved(ctx.notifier, creator_email, project.name, mr.title)
    return response


async def request_changes(
    ctx: CommandContext, project_id: str, number: int, comment: str | None = None
) -> MergeRequestResponse:
    """Record a changes-requested review; an approved request drops back to ``open``."""
    async with get_project_locks().acquire(project_id):
        project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        mr = await _get_mr(ctx, project_id, number)
        _refuse_self_action(mr, ctx.actor_id, "request changes on")
        reviewers = _with_review(mr, member, "requested_changes", comment)
        status = next_status(mr.status, MergeRequestEvent.REQUEST_CHANGES)

        mr.reviewers = reviewers
        mr.status = status.value
        mr.updated_at = _utc_now()
        await ctx.session.commit()
        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.MERGE_CLOSED, {"mergeRequest": wire(response)})
    logger.info(f"✅ Changes requested on MR #{number} by {ctx.actor_id}")

    creator_email = await _email_of(ctx, project_id, mr.created_by)
    if creator_email:
        await notify_changes_requested(ctx.notifier, creator_email, project.name, mr.title, comment)
    return response


async def complete_merge(
    ctx: CommandContext, project_id: str, number: int
) -> MergeRequestResponse:
    """Merge (take source) — manager only, never the request's creator.

    Requires ``approved`` when the project requires approval, otherwise
    ``open`` or ``approved``.  Overwrites the target's snapshot with the
    source's, records a merge commit on the target, and optionally marks the
    source branch ``merged``.
    """
    async with get_project_locks().acquire(project_id):
        project, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(member, "complete merges")
        mr = await _get_mr(ctx, project_id, number)
        _refuse_self_action(mr, ctx.actor_id, "merge")

        protection = _project_settings(project).branch_protection
        status = next_status(
            mr.status,
            MergeRequestEvent.MERGE,
            require_approval=protection.require_approval,
        )
        source = await repository.find_branch_by_name(
            ctx.session, project_id, mr.source_branch, active_only=True
        )
        target = await repository.find_branch_by_name(
            ctx.session, project_id, mr.target_branch, active_only=True
        )
        if source is None:
            raise NotFoundError(f"Source branch '{mr.source_branch}' not found or inactive")
        if target is None:
            raise NotFoundError(f"Target branch '{mr.target_branch}' not found or inactive")

        merge_commit, components = await repository.take_source(ctx, source, target)

        now = _utc_now()
        mr.stats = {"filesChanged": 1, "componentsUpdated": components}
        mr.status = status.value
        mr.merged_at = now
        mr.merged_by = ctx.actor_id
        mr.merge_commit_hash = merge_commit.hash
        mr.updated_at = now
        if protection.auto_delete_merged and not source.is_primary:
            source.status = "merged"
            source.updated_at = now
        await ctx.session.commit()

        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(target))})
        if source.status == "merged":
            ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(source))})
        ctx.emit(project_id, EventKind.MERGE_MERGED, {"mergeRequest": wire(response)})
    logger.info(
        f"✅ Merged MR #{number} ({mr.source_branch} → {mr.target_branch}) as {merge_commit.hash}"
    )
    return response


async def revert_merge(
    ctx: CommandContext, project_id: str, number: int
) -> MergeRequestResponse:
    """Undo a completed merge (manager only) by restoring the target's pre-merge snapshot."""
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(member, "revert merges")
        mr = await _get_mr(ctx, project_id, number)
        status = next_status(mr.status, MergeRequestEvent.REVERT)

        target = await repository.get_branch_by_name(
            ctx.session, project_id, mr.target_branch, active_only=True
        )
        merge_commit = await repository.find_merge_commit(
            ctx.session,
            target,
            merge_commit_hash=mr.merge_commit_hash,
            source_name=mr.source_branch,
        )
        revert_commit = await repository.restore_before_merge(
            ctx, target, merge_commit, f"Reverted merge #{mr.merge_request_id}: {mr.title}"
        )

        now = _utc_now()
        mr.status = status.value
        mr.reverted_at = now
        mr.reverted_by = ctx.actor_id
        mr.revert_commit_hash = revert_commit.hash
        mr.updated_at = now
        await ctx.session.commit()

        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(target))})
        ctx.emit(project_id, EventKind.MERGE_CLOSED, {"mergeRequest": wire(response)})
    logger.info(f"✅ Reverted merge of MR #{number} on '{target.name}' as {revert_commit.hash}")
    return response


async def close_merge_request(
    ctx: CommandContext, project_id: str, number: int
) -> MergeRequestResponse:
    """Withdraw an open or approved request (its creator or a manager)."""
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        mr = await _get_mr(ctx, project_id, number)
        if mr.created_by != ctx.actor_id and not authz.is_manager(member):
            logger.warning(
                f"⚠️ Denied close of MR #{number}: user={ctx.actor_id} role={authz.role_of(member)}"
            )
            raise ForbiddenError("Only the creator or a manager can close a merge request")
        status = next_status(mr.status, MergeRequestEvent.CLOSE)

        now = _utc_now()
        mr.status = status.value
        mr.closed_at = now
        mr.closed_by = ctx.actor_id
        mr.updated_at = now
        await ctx.session.commit()
        response = to_merge_request_response(mr)
        ctx.emit(project_id, EventKind.MERGE_CLOSED, {"mergeRequest": wire(response)})
    logger.info(f"✅ Closed MR #{number} in project {project_id}")
    return response
