"""DesignHub commit route handlers.

Endpoint summary:
  POST /designhub/projects/{project_id}/commits  — commit a snapshot on a branch
  GET  /designhub/projects/{project_id}/history  — commits newest first

Revert lives with the branch routes.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from designhub.api.dependencies import get_command_context
from designhub.models.designhub import CommitCreateRequest, CommitResponse, HistoryResponse
from designhub.services import repository
from designhub.services.context import CommandContext
from designhub.services.snapshot_stats import encode_snapshot

router = APIRouter()


@router.post(
    "/projects/{project_id}/commits",
    response_model=CommitResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createCommit",
    summary="Commit a snapshot",
)
async def create_commit(
    project_id: str,
    body: CommitCreateRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> CommitResponse:
    """The snapshot also becomes the branch's working snapshot.

    Returns 400 if the snapshot exceeds the size limit.
    Returns 403 if the caller may not write the branch.
    """
    changes = body.changes.model_dump(by_alias=True) if body.changes is not None else None
    return await repository.create_commit(
        ctx,
        project_id,
        branch_id=body.branch_id,
        message=body.message,
        snapshot=encode_snapshot(body.snapshot),
        changes=changes,
        thumbnail_url=body.thumbnail_url,
    )


@router.get(
    "/projects/{project_id}/history",
    response_model=HistoryResponse,
    operation_id="getHistory",
    summary="Commit history of a branch or the whole project",
)
async def get_history(
    project_id: str,
    branch_name: str | None = Query(None, alias="branchName", description="Limit to one branch"),
    limit: int = Query(
        repository.DEFAULT_HISTORY_LIMIT, ge=1, le=repository.MAX_HISTORY_LIMIT,
    ),
    ctx: CommandContext = Depends(get_command_context),
) -> HistoryResponse:
    commits = await repository.list_history(ctx, project_id, branch_name=branch_name, limit=limit)
    return HistoryResponse(commits=commits)
