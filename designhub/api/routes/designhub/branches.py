"""DesignHub branch and snapshot route handlers.

Endpoint summary:
  GET    /designhub/projects/{project_id}/branches                                 — list branches
  POST   /designhub/projects/{project_id}/branches                                 — create a branch
  GET    /designhub/projects/{project_id}/branches/{branch_id}/snapshot            — resolve the working snapshot
  POST   /designhub/projects/{project_id}/branches/{branch_id}/snapshot            — save the working snapshot
  POST   /designhub/projects/{project_id}/branches/{branch_id}/revert/{commit_hash} — revert to a commit
  POST   /designhub/projects/{project_id}/checkout                                 — switch branches
  GET    /designhub/projects/{project_id}/branches/{branch_name}                   — one branch with recent commits
  DELETE /designhub/projects/{project_id}/branches/{branch_name}                   — soft-delete (manager)

Branch names contain ``/`` (``feature/header``), so the by-name routes use a
path parameter and are declared after the id-based routes; names may not
contain the segments ``snapshot`` or ``revert``.  Snapshots cross
the wire as JSON objects and are stored as compact UTF-8 JSON.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from designhub.api.dependencies import get_command_context
from designhub.models.designhub import (
    BranchCreateRequest,
    BranchDetailResponse,
    BranchListResponse,
    BranchResponse,
    CheckoutRequest,
    CheckoutResponse,
    RevertResponse,
    SnapshotResponse,
    SnapshotSaveRequest,
)
from designhub.services import repository
from designhub.services.context import CommandContext
from designhub.services.responses import to_branch_response
from designhub.services.snapshot_stats import decode_snapshot, encode_snapshot

router = APIRouter()


def _snapshot_response(result: repository.SnapshotResult) -> SnapshotResponse:
    return SnapshotResponse(
        branch_id=result.branch.branch_id,
        has_snapshot=result.has_snapshot,
        snapshot=decode_snapshot(result.data) if result.data is not None else None,
        path=result.path,
    )


@router.get(
    "/projects/{project_id}/branches",
    response_model=BranchListResponse,
    operation_id="listBranches",
    summary="List the project's branches",
)
async def list_branches(
    project_id: str,
    ctx: CommandContext = Depends(get_command_context),
) -> BranchListResponse:
    return BranchListResponse(branches=await repository.list_branches(ctx, project_id))


@router.post(
    "/projects/{project_id}/branches",
    response_model=BranchResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createBranch",
    summary="Create a branch from a base branch",
)
async def create_branch(
    project_id: str,
    body: BranchCreateRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> BranchResponse:
    """Create ``{type}/{name}`` from ``baseBranch`` (default ``main``).

    Returns 404 if the base branch does not exist.
    Returns 409 if a branch with that name already exists.
    """
    return await repository.create_branch(
        ctx,
        project_id,
        name=body.name,
        branch_type=body.type,
        base_branch=body.base_branch,
        description=body.description,
    )


@router.get(
    "/projects/{project_id}/branches/{branch_id}/snapshot",
    response_model=SnapshotResponse,
    operation_id="getBranchSnapshot",
    summary="Resolve a branch's working snapshot",
)
async def get_branch_snapshot(
    project_id: str,
    branch_id: str,
    ctx: CommandContext = Depends(get_command_context),
) -> SnapshotResponse:
    """Falls back to the tip commit, then to the base branch; ``hasSnapshot`` is false when all miss."""
    return _snapshot_response(await repository.get_branch_snapshot(ctx, project_id, branch_id))


@router.post(
    "/projects/{project_id}/branches/{branch_id}/snapshot",
    response_model=SnapshotResponse,
    operation_id="saveBranchSnapshot",
    summary="Save a branch's working snapshot without committing",
)
async def save_branch_snapshot(
    project_id: str,
    branch_id: str,
    body: SnapshotSaveRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> SnapshotResponse:
    result = await repository.save_branch_snapshot(
        ctx, project_id, branch_id, encode_snapshot(body.snapshot)
    )
    return _snapshot_response(result)


@router.post(
    "/projects/{project_id}/branches/{branch_id}/revert/{commit_hash}",
    response_model=RevertResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="revertToCommit",
    summary="Restore a branch to an earlier commit",
)
async def revert_to_commit(
    project_id: str,
    branch_id: str,
    commit_hash: str,
    ctx: CommandContext = Depends(get_command_context),
) -> RevertResponse:
    """Writes a new commit whose snapshot is the reverted-to commit's; history is kept."""
    commit, reverted_to = await repository.revert_to_commit(ctx, project_id, branch_id, commit_hash)
    return RevertResponse(commit=commit, reverted_to=reverted_to)


@router.post(
    "/projects/{project_id}/checkout",
    response_model=CheckoutResponse,
    operation_id="checkoutBranch",
    summary="Save the current work and switch to another branch",
)
async def checkout(
    project_id: str,
    body: CheckoutRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> CheckoutResponse:
    """The working snapshot is saved to the source branch only when the caller may write it."""
    current = encode_snapshot(body.current_snapshot) if body.current_snapshot is not None else None
    result = await repository.checkout(
        ctx,
        project_id,
        target_branch_id=body.target_branch_id,
        source_branch_id=body.source_branch_id,
        current_snapshot=current,
    )
    return CheckoutResponse(
        branch=to_branch_response(result.branch),
        has_snapshot=result.has_snapshot,
        snapshot=decode_snapshot(result.data) if result.data is not None else None,
        snapshot_path=result.path,
        source_saved=result.source_saved,
    )


@router.get(
    "/projects/{project_id}/branches/{branch_name:path}",
    response_model=BranchDetailResponse,
    operation_id="getBranch",
    summary="Get a branch with its recent commits",
)
async def get_branch(
    project_id: str,
    branch_name: str,
    ctx: CommandContext = Depends(get_command_context),
) -> BranchDetailResponse:
    return await repository.get_branch(ctx, project_id, branch_name)


@router.delete(
    "/projects/{project_id}/branches/{branch_name:path}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="deleteBranch",
    summary="Soft-delete a branch (manager only)",
)
async def delete_branch(
    project_id: str,
    branch_name: str,
    ctx: CommandContext = Depends(get_command_context),
) -> Response:
    """Returns 403 for the primary branch and 409 while an open merge request uses it as source."""
    await repository.delete_branch(ctx, project_id, branch_name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
