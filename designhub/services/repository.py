"""DesignHub repository engine — branches, commits, snapshots.

This module owns every operation that touches both stores: the metadata rows
in ``designhub_branches`` / ``designhub_commits`` and the blobs under
``projects/{projectId}/branches/{branchId}/``.  Route handlers delegate here;
no business logic lives in routes.

Boundary rules:
- Must NOT import FastAPI or route modules.
- May import ORM models from designhub.db.designhub_models.
- May import Pydantic response models from designhub.models.designhub.
- Talks to blob storage only through the ObjectStoreBackend interface.

Write ordering
--------------
Mutating commands run under the project's lock and follow one order:
authorize, validate, object-store I/O, metadata writes, commit, emit.  Blobs
are written before the rows that reference them, so a failure part-way
leaves at worst an unreferenced blob, never a row pointing at nothing.
``create_branch`` is the one multi-blob command that cleans up after itself:
if any step fails, the new branch's blobs are deleted and no row survives.

Snapshot resolution
-------------------
Reading a branch's snapshot falls back through three tiers:

1. the branch's ``current.json``
2. the blob of its tip commit (via the commit row's ``file_url``)
3. the ``current.json`` of its base branch

The first tier that exists wins.  When none does, the result simply has no
snapshot; that is not an error.
"""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.db import designhub_models as db
from designhub.errors import ConflictError, ForbiddenError, NotFoundError
from designhub.models.designhub import BranchDetailResponse, BranchResponse, CommitResponse
from designhub.services import authz
from designhub.services.context import CommandContext
from designhub.services.events import EventKind
from designhub.services.ids import commit_hash
from designhub.services.locks import get_project_locks
from designhub.services.merge_request_state import ACTIVE_STATUSES
from designhub.services.object_store import (
    ObjectNotFoundError,
    branch_prefix,
    commit_path,
    current_path,
)
from designhub.services.responses import (
    to_branch_response,
    to_commit_response,
    wire,
)
from designhub.services.snapshot_stats import count_components

logger = logging.getLogger(__name__)

PRIMARY_BRANCH_NAME = "main"
INITIAL_COMMIT_MESSAGE = "Initial commit from base branch"
RECENT_COMMITS_LIMIT = 10
DEFAULT_HISTORY_LIMIT = 20
MAX_HISTORY_LIMIT = 100


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _tip_projection(commit: db.DesignCommit) -> dict[str, Any]:
    """Denormalized ``last_commit`` value for a branch row."""
    timestamp = commit.timestamp or _utc_now()
    return {
        "hash": commit.hash,
        "message": commit.message,
        "timestamp": timestamp.isoformat(),
        "authorId": commit.author_id,
    }


def _tip_hash(branch: db.DesignBranch) -> str | None:
    return branch.last_commit.get("hash") if branch.last_commit else None


def _changes(*, files_modified: int = 0, components_updated: int = 0) -> dict[str, int]:
    return {
        "filesAdded": 0,
        "filesModified": files_modified,
        "filesDeleted": 0,
        "componentsUpdated": components_updated,
    }


@dataclass
class SnapshotResult:
    """A resolved branch snapshot; ``data`` is None when every tier missed."""

    branch: db.DesignBranch
    data: bytes | None
    path: str | None

    @property
    def has_snapshot(self) -> bool:
        return self.data is not None


@dataclass
class CheckoutResult(SnapshotResult):
    # True when the caller's working snapshot was written to the source branch
    source_saved: bool = False


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_branch_by_id(
    session: AsyncSession, project_id: str, branch_id: str, *, include_deleted: bool = False
) -> db.DesignBranch:
    """Return the branch or raise NOT_FOUND (also when it belongs to another project)."""
    branch = await session.get(db.DesignBranch, branch_id)
    if branch is None or branch.project_id != project_id:
        raise NotFoundError(f"Branch {branch_id} not found")
    if branch.status == "deleted" and not include_deleted:
        raise NotFoundError(f"Branch {branch_id} not found")
    return branch


async def find_branch_by_name(
    session: AsyncSession, project_id: str, name: str, *, active_only: bool = False
) -> db.DesignBranch | None:
    """Return the non-deleted branch called ``name``, or None."""
    stmt = select(db.DesignBranch).where(
        db.DesignBranch.project_id == project_id,
        db.DesignBranch.name == name,
    )
    if active_only:
        stmt = stmt.where(db.DesignBranch.status == "active")
    else:
        stmt = stmt.where(db.DesignBranch.status != "deleted")
    return (await session.execute(stmt)).scalar_one_or_none()


async def get_branch_by_name(
    session: AsyncSession, project_id: str, name: str, *, active_only: bool = False
) -> db.DesignBranch:
    branch = await find_branch_by_name(session, project_id, name, active_only=active_only)
    if branch is None:
        raise NotFoundError(f"Branch '{name}' not found")
    return branch


async def find_commit(session: AsyncSession, hash_: str) -> db.DesignCommit | None:
    stmt = select(db.DesignCommit).where(db.DesignCommit.hash == hash_)
    return (await session.execute(stmt)).scalar_one_or_none()


def _ensure_active(branch: db.DesignBranch) -> None:
    if branch.status != "active":
        raise ConflictError(f"Branch '{branch.name}' is {branch.status}")


def _add_commit(
    ctx: CommandContext,
    branch: db.DesignBranch,
    *,
    hash_: str,
    message: str,
    parent_hash: str | None,
    file_url: str,
    changes: dict[str, int],
    merge_parent_hash: str | None = None,
    thumbnail_url: str | None = None,
) -> db.DesignCommit:
    """Stage a commit row and advance the branch tip to it."""
    now = _utc_now()
    commit = db.DesignCommit(
        hash=hash_,
        project_id=branch.project_id,
        branch_id=branch.branch_id,
        message=message,
        author_id=ctx.actor_id,
        timestamp=now,
        parent_commit_hash=parent_hash,
        merge_parent_hash=merge_parent_hash,
        changes=changes,
        file_url=file_url,
        thumbnail_url=thumbnail_url,
    )
    ctx.session.add(commit)
    branch.last_commit = _tip_projection(commit)
    branch.updated_at = now
    return commit


async def _write_commit_blob(
    ctx: CommandContext, branch: db.DesignBranch, message: str, data: bytes
) -> tuple[str, str]:
    """Write ``data`` as a new commit blob on ``branch``; returns (hash, path)."""
    new_hash = commit_hash(
        branch.project_id, branch.branch_id, message, ctx.actor_id, _tip_hash(branch)
    )
    path = commit_path(branch.project_id, branch.branch_id, new_hash)
    await ctx.checkpoint()
    await ctx.store.put(path, data)
    return new_hash, path


async def resolve_snapshot(ctx: CommandContext, branch: db.DesignBranch) -> SnapshotResult:
    """Find the snapshot a client should load for ``branch`` (three-tier fallback)."""
    path = current_path(branch.project_id, branch.branch_id)
    try:
        return SnapshotResult(branch=branch, data=await ctx.store.get(path), path=path)
    except ObjectNotFoundError:
        pass

    tip = _tip_hash(branch)
    if tip:
        commit = await find_commit(ctx.session, tip)
        if commit is not None:
            try:
                data = await ctx.store.get(commit.file_url)
                return SnapshotResult(branch=branch, data=data, path=commit.file_url)
            except ObjectNotFoundError:
                pass

    base = await find_branch_by_name(
        ctx.session, branch.project_id, branch.base_branch, active_only=True
    )
    if base is not None and base.branch_id != branch.branch_id:
        base_path = current_path(base.project_id, base.branch_id)
        try:
            return SnapshotResult(branch=branch, data=await ctx.store.get(base_path), path=base_path)
        except ObjectNotFoundError:
            pass

    logger.info(f"No snapshot found for branch {branch.name} in project {branch.project_id}")
    return SnapshotResult(branch=branch, data=None, path=None)


# ---------------------------------------------------------------------------
# Branches
# ---------------------------------------------------------------------------


async def create_primary_branch(
    session: AsyncSession, project_id: str, created_by: str
) -> db.DesignBranch:
    """Stage the ``main`` branch of a new project (no blobs, no commits)."""
    branch = db.DesignBranch(
        project_id=project_id,
        name=PRIMARY_BRANCH_NAME,
        type="main",
        description="Main branch",
        base_branch=PRIMARY_BRANCH_NAME,
        created_by=created_by,
        is_primary=True,
        status="active",
    )
    session.add(branch)
    return branch


async def list_branches(ctx: CommandContext, project_id: str) -> list[BranchResponse]:
    """Return the project's non-deleted branches, newest first."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    stmt = (
        select(db.DesignBranch)
        .where(
            db.DesignBranch.project_id == project_id,
            db.DesignBranch.status != "deleted",
        )
        .order_by(db.DesignBranch.created_at.desc())
    )
    rows = (await ctx.session.execute(stmt)).scalars().all()
    return [to_branch_response(r) for r in rows]


async def get_branch(ctx: CommandContext, project_id: str, name: str) -> BranchDetailResponse:
    """Return one branch with its ten most recent commits."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    branch = await get_branch_by_name(ctx.session, project_id, name)
    commits = await _recent_commits(ctx.session, project_id, branch.branch_id, RECENT_COMMITS_LIMIT)
    return BranchDetailResponse(
        **to_branch_response(branch).model_dump(),
        recent_commits=[to_commit_response(c) for c in commits],
    )


async def create_branch(
    ctx: CommandContext,
    project_id: str,
    *,
    name: str,
    branch_type: str,
    base_branch: str,
    description: str = "",
) -> BranchResponse:
    """Create ``{branch_type}/{name}`` from ``base_branch``.

    The new branch gets a copy of the base's working snapshot when one
    exists.  When the base has a tip commit, an "Initial commit from base
    branch" is written whose parent is that tip; its blob is the copied
    snapshot, or the base commit's blob when there was nothing to copy.

    Raises:
        ConflictError: a non-deleted branch already has that name.
        NotFoundError: the base branch does not exist or is not active.
        StoreIOError: blob I/O failed; nothing of the new branch remains.
    """
    full_name = f"{branch_type}/{name}"
    async with get_project_locks().acquire(project_id):
        await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        if await find_branch_by_name(ctx.session, project_id, full_name) is not None:
            raise ConflictError(f"Branch '{full_name}' already exists")
        base = await find_branch_by_name(ctx.session, project_id, base_branch, active_only=True)
        if base is None:
            raise NotFoundError(f"Base branch '{base_branch}' not found")
        base_tip = (
            await find_commit(ctx.session, _tip_hash(base)) if _tip_hash(base) else None
        )

        branch_id = uuid.uuid4().hex
        new_current = current_path(project_id, branch_id)
        try:
            await ctx.checkpoint()
            has_current = True
            try:
                await ctx.store.copy(current_path(project_id, base.branch_id), new_current)
            except ObjectNotFoundError:
                has_current = False
                logger.info(f"Base branch {base.name} has no snapshot; {full_name} starts empty")

            initial: tuple[str, str] | None = None
            if base_tip is not None:
                initial_hash = commit_hash(
                    project_id, branch_id, INITIAL_COMMIT_MESSAGE, ctx.actor_id, base_tip.hash
                )
                if has_current:
                    file_url = commit_path(project_id, branch_id, initial_hash)
                    await ctx.checkpoint()
                    await ctx.store.copy(new_current, file_url)
                else:
                    file_url = base_tip.file_url
                initial = (initial_hash, file_url)

            branch = db.DesignBranch(
                branch_id=branch_id,
                project_id=project_id,
                name=full_name,
                type=branch_type,
                description=description,
                base_branch=base.name,
                created_by=ctx.actor_id,
                is_primary=False,
                status="active",
            )
            ctx.session.add(branch)
            if initial is not None and base_tip is not None:
                initial_hash, file_url = initial
                _add_commit(
                    ctx,
                    branch,
                    hash_=initial_hash,
                    message=INITIAL_COMMIT_MESSAGE,
                    parent_hash=base_tip.hash,
                    file_url=file_url,
                    changes=_changes(),
                    thumbnail_url=base_tip.thumbnail_url,
                )
            await ctx.session.flush()
        except Exception:
            await _discard_blobs(ctx, project_id, branch_id)
            raise

        await ctx.session.commit()
        response = to_branch_response(branch)
        ctx.emit(project_id, EventKind.BRANCH_CREATED, {"branch": wire(response)})
    logger.info(f"✅ Created branch '{full_name}' from '{base.name}' in project {project_id}")
    return response


async def _discard_blobs(ctx: CommandContext, project_id: str, branch_id: str) -> None:
    prefix = branch_prefix(project_id, branch_id)
    try:
        await ctx.store.delete_prefix(prefix)
    except Exception as e:
        logger.error(f"❌ Could not clean up blobs under {prefix}: {e}")


async def delete_branch(ctx: CommandContext, project_id: str, name: str) -> None:
    """Soft-delete a branch (manager only); its blobs are kept.

    Raises:
        ForbiddenError: actor is not a manager, or the branch is primary.
        ConflictError: an open or approved merge request uses it as source.
    """
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        authz.require_manager(member, "delete branches")
        branch = await get_branch_by_name(ctx.session, project_id, name)
        if branch.is_primary:
            raise ForbiddenError("Cannot delete the primary branch")

        stmt = select(func.count()).select_from(db.DesignMergeRequest).where(
            db.DesignMergeRequest.project_id == project_id,
            db.DesignMergeRequest.source_branch == name,
            db.DesignMergeRequest.status.in_([s.value for s in ACTIVE_STATUSES]),
        )
        open_count = (await ctx.session.execute(stmt)).scalar_one()
        if open_count:
            raise ConflictError(
                f"Cannot delete branch '{name}' with {open_count} open merge request(s)"
            )

        branch.status = "deleted"
        branch.updated_at = _utc_now()
        await ctx.session.commit()
        ctx.emit(project_id, EventKind.BRANCH_DELETED, {"branchName": name})
    logger.info(f"✅ Deleted branch '{name}' in project {project_id}")


# ---------------------------------------------------------------------------
# Snapshots & checkout
# ---------------------------------------------------------------------------


async def get_branch_snapshot(
    ctx: CommandContext, project_id: str, branch_id: str
) -> SnapshotResult:
    """Resolve the snapshot of one branch (read-only, no lock)."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    branch = await get_branch_by_id(ctx.session, project_id, branch_id)
    return await resolve_snapshot(ctx, branch)


async def save_branch_snapshot(
    ctx: CommandContext, project_id: str, branch_id: str, data: bytes
) -> SnapshotResult:
    """Overwrite a branch's working snapshot without committing.

    Raises:
        ForbiddenError: the actor may not write this branch.
    """
    ctx.store.ensure_within_limit(data)
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        branch = await get_branch_by_id(ctx.session, project_id, branch_id)
        _ensure_active(branch)
        authz.require_branch_write(member, branch, "save the snapshot")

        path = current_path(project_id, branch_id)
        await ctx.checkpoint()
        await ctx.store.put(path, data)
        branch.updated_at = _utc_now()
        await ctx.session.commit()
        ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(branch))})
    logger.info(f"✅ Saved working snapshot of '{branch.name}' ({len(data)} bytes)")
    return SnapshotResult(branch=branch, data=data, path=path)


async def checkout(
    ctx: CommandContext,
    project_id: str,
    *,
    target_branch_id: str,
    source_branch_id: str | None = None,
    current_snapshot: bytes | None = None,
) -> CheckoutResult:
    """Switch the caller from ``source_branch_id`` to ``target_branch_id``.

    The caller's working snapshot is saved to the source branch when they may
    write it (manager, branch creator, or primary branch); otherwise it is
    dropped without error so that anyone can browse others' branches.  The
    target's snapshot is then resolved with the three-tier fallback.
    """
    if current_snapshot is not None:
        ctx.store.ensure_within_limit(current_snapshot)
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        target = await get_branch_by_id(ctx.session, project_id, target_branch_id)

        saved = False
        if source_branch_id and current_snapshot is not None:
            # A deleted source still lets the caller switch away from it
            source = await get_branch_by_id(
                ctx.session, project_id, source_branch_id, include_deleted=True
            )
            if source.status != "active":
                logger.info(
                    f"Checkout: discarded working snapshot of '{source.name}' "
                    f"(branch is {source.status})"
                )
            elif authz.may_write_branch(member, source):
                await ctx.checkpoint()
                await ctx.store.put(current_path(project_id, source.branch_id), current_snapshot)
                saved = True
            else:
                logger.info(
                    f"Checkout: discarded working snapshot of '{source.name}' "
                    f"(user {ctx.actor_id} may not write it)"
                )

        await ctx.checkpoint()
        resolved = await resolve_snapshot(ctx, target)
    return CheckoutResult(
        branch=target, data=resolved.data, path=resolved.path, source_saved=saved
    )


# ---------------------------------------------------------------------------
# Commits & history
# ---------------------------------------------------------------------------


async def create_commit(
    ctx: CommandContext,
    project_id: str,
    *,
    branch_id: str,
    message: str,
    snapshot: bytes,
    changes: dict[str, int] | None = None,
    thumbnail_url: str | None = None,
) -> CommitResponse:
    """Commit ``snapshot`` on a branch and make it the branch's working snapshot.

    Writes the commit blob, then ``current.json``, then the commit row and the
    branch tip.  A failure between the two puts leaves an orphan commit blob.
    """
    ctx.store.ensure_within_limit(snapshot)
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        branch = await get_branch_by_id(ctx.session, project_id, branch_id)
        _ensure_active(branch)
        authz.require_branch_write(member, branch, "commit")

        parent = _tip_hash(branch)
        new_hash, file_url = await _write_commit_blob(ctx, branch, message, snapshot)
        await ctx.checkpoint()
        await ctx.store.put(current_path(project_id, branch_id), snapshot)

        commit = _add_commit(
            ctx,
            branch,
            hash_=new_hash,
            message=message,
            parent_hash=parent,
            file_url=file_url,
            changes=changes or _changes(
                files_modified=1 if parent else 0,
                components_updated=count_components(snapshot),
            ),
            thumbnail_url=thumbnail_url,
        )
        await ctx.session.commit()
        ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(branch))})
    logger.info(f"✅ Commit {new_hash} on '{branch.name}' by {ctx.actor_id}: {message}")
    return to_commit_response(commit)


async def _recent_commits(
    session: AsyncSession, project_id: str, branch_id: str | None, limit: int
) -> list[db.DesignCommit]:
    stmt = select(db.DesignCommit).where(db.DesignCommit.project_id == project_id)
    if branch_id is not None:
        stmt = stmt.where(db.DesignCommit.branch_id == branch_id)
    stmt = stmt.order_by(db.DesignCommit.timestamp.desc(), db.DesignCommit.id.desc()).limit(limit)
    return list((await session.execute(stmt)).scalars().all())


async def list_history(
    ctx: CommandContext,
    project_id: str,
    *,
    branch_name: str | None = None,
    limit: int = DEFAULT_HISTORY_LIMIT,
) -> list[CommitResponse]:
    """Return commits newest first, for one branch or the whole project."""
    await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
    branch_id: str | None = None
    if branch_name:
        branch_id = (await get_branch_by_name(ctx.session, project_id, branch_name)).branch_id
    limit = max(1, min(limit, MAX_HISTORY_LIMIT))
    commits = await _recent_commits(ctx.session, project_id, branch_id, limit)
    return [to_commit_response(c) for c in commits]


async def revert_to_commit(
    ctx: CommandContext, project_id: str, branch_id: str, hash_: str
) -> tuple[CommitResponse, CommitResponse]:
    """Restore a branch to an earlier commit by writing a new commit.

    History is preserved: the new commit's parent is the current tip and its
    blob is a copy of the reverted-to snapshot.

    Returns:
        (new revert commit, the commit reverted to)
    """
    async with get_project_locks().acquire(project_id):
        _, member = await authz.require_project_access(ctx.session, project_id, ctx.actor_id)
        branch = await get_branch_by_id(ctx.session, project_id, branch_id)
        _ensure_active(branch)
        authz.require_branch_write(member, branch, "revert")

        stmt = select(db.DesignCommit).where(
            db.DesignCommit.project_id == project_id,
            db.DesignCommit.branch_id == branch_id,
            db.DesignCommit.hash == hash_,
        )
        target = (await ctx.session.execute(stmt)).scalar_one_or_none()
        if target is None:
            raise NotFoundError(f"Commit {hash_} not found on this branch")

        await ctx.checkpoint()
        data = await ctx.store.get(target.file_url)
        await ctx.checkpoint()
        await ctx.store.put(current_path(project_id, branch_id), data)

        message = f"Reverted to commit {target.hash[:7]}: {target.message}"
        parent = _tip_hash(branch)
        new_hash, file_url = await _write_commit_blob(ctx, branch, message, data)
        commit = _add_commit(
            ctx,
            branch,
            hash_=new_hash,
            message=message,
            parent_hash=parent,
            file_url=file_url,
            changes=_changes(files_modified=1, components_updated=count_components(data)),
        )
        await ctx.session.commit()
        ctx.emit(project_id, EventKind.BRANCH_UPDATED, {"branch": wire(to_branch_response(branch))})
    logger.info(f"✅ Reverted '{branch.name}' to {target.hash[:7]} as {new_hash}")
    return to_commit_response(commit), to_commit_response(target)


# ---------------------------------------------------------------------------
# Merge data operations (state handled by designhub.services.merge_requests)
# ---------------------------------------------------------------------------


async def take_source(
    ctx: CommandContext, source: db.DesignBranch, target: db.DesignBranch
) -> tuple[db.DesignCommit, int]:
    """Overwrite the target's snapshot with the source's and record a merge commit.

    The merge commit's parent is the target's previous tip;
    ``merge_parent_hash`` records the source tip that was taken.  Staged
    only; the caller commits.

    Returns:
        (merge commit row, component count of the merged snapshot)

    Raises:
        NotFoundError: the source branch has no working snapshot.
    """
    project_id = target.project_id
    target_current = current_path(project_id, target.branch_id)
    await ctx.checkpoint()
    try:
        await ctx.store.copy(current_path(project_id, source.branch_id), target_current)
    except ObjectNotFoundError:
        raise NotFoundError(f"Source branch '{source.name}' has no snapshot to merge")
    await ctx.checkpoint()
    merged = await ctx.store.get(target_current)

    message = f"Merge {source.name} into {target.name}"
    parent = _tip_hash(target)
    new_hash, file_url = await _write_commit_blob(ctx, target, message, merged)
    components = count_components(merged)
    commit = _add_commit(
        ctx,
        target,
        hash_=new_hash,
        message=message,
        parent_hash=parent,
        merge_parent_hash=_tip_hash(source),
        file_url=file_url,
        changes=_changes(files_modified=1, components_updated=components),
    )
    return commit, components


def _looks_like_merge_of(commit: db.DesignCommit, source_name: str, target_name: str) -> bool:
    return (
        commit.message.startswith("Merge ")
        and " into" in commit.message
        and source_name in commit.message
        and target_name in commit.message
    )


async def find_merge_commit(
    session: AsyncSession,
    target: db.DesignBranch,
    *,
    merge_commit_hash: str | None,
    source_name: str,
) -> db.DesignCommit:
    """Locate the commit a merge request produced on ``target``.

    Uses the explicit back-reference when present.  Older requests without
    one fall back to scanning the target's commits newest first for a
    ``Merge <source> into <target>`` message.
    """
    if merge_commit_hash:
        commit = await find_commit(session, merge_commit_hash)
        if commit is not None:
            return commit
        logger.warning(f"⚠️ Recorded merge commit {merge_commit_hash} missing; scanning history")

    stmt = (
        select(db.DesignCommit)
        .where(
            db.DesignCommit.project_id == target.project_id,
            db.DesignCommit.branch_id == target.branch_id,
        )
        .order_by(db.DesignCommit.timestamp.desc(), db.DesignCommit.id.desc())
    )
    for commit in (await session.execute(stmt)).scalars():
        if _looks_like_merge_of(commit, source_name, target.name):
            return commit
    raise NotFoundError(f"Merge commit of '{source_name}' into '{target.name}' not found")


async def restore_before_merge(
    ctx: CommandContext,
    target: db.DesignBranch,
    merge_commit: db.DesignCommit,
    message: str,
) -> db.DesignCommit:
    """Put the target back to the snapshot its tip had before ``merge_commit``.

    Staged only; the caller commits.

    Raises:
        NotFoundError: the merge commit has no parent, or the parent's blob is gone.
    """
    if not merge_commit.parent_commit_hash:
        raise NotFoundError("Merge commit has no parent to restore")
    parent = await find_commit(ctx.session, merge_commit.parent_commit_hash)
    if parent is None:
        raise NotFoundError(f"Parent commit {merge_commit.parent_commit_hash} not found")

    await ctx.checkpoint()
    data = await ctx.store.get(parent.file_url)
    await ctx.checkpoint()
    await ctx.store.put(current_path(target.project_id, target.branch_id), data)

    previous_tip = _tip_hash(target)
    new_hash, file_url = await _write_commit_blob(ctx, target, message, data)
    return _add_commit(
        ctx,
        target,
        hash_=new_hash,
        message=message,
        parent_hash=previous_tip,
        file_url=file_url,
        changes=_changes(files_modified=1, components_updated=count_components(data)),
    )
