"""DesignHub merge request route handlers.

Endpoint summary:
  GET  /designhub/projects/{project_id}/merge-requests                      — list (optional status filter)
  POST /designhub/projects/{project_id}/merge-requests                      — open a merge request
  GET  /designhub/projects/{project_id}/merge-requests/{mr_id}              — get one
  POST /designhub/projects/{project_id}/merge-requests/{mr_id}/approve          — approve
  POST /designhub/projects/{project_id}/merge-requests/{mr_id}/request-changes  — request changes
  POST /designhub/projects/{project_id}/merge-requests/{mr_id}/merge            — complete the merge (manager)
  POST /designhub/projects/{project_id}/merge-requests/{mr_id}/revert           — undo a merge (manager)
  POST /designhub/projects/{project_id}/merge-requests/{mr_id}/close            — withdraw

No business logic lives here; state changes are delegated to
designhub.services.merge_requests.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from designhub.api.dependencies import get_command_context
from designhub.models.designhub import (
    MergeRequestCreateRequest,
    MergeRequestListResponse,
    MergeRequestResponse,
    RequestChangesRequest,
)
from designhub.services import merge_requests as mr_service
from designhub.services.context import CommandContext

router = APIRouter()

_BASE = "/projects/{project_id}/merge-requests"


@router.get(
    _BASE,
    response_model=MergeRequestListResponse,
    operation_id="listMergeRequests",
    summary="List merge requests",
)
async def list_merge_requests(
    project_id: str,
    mr_status: str = Query(
        "all",
        alias="status",
        pattern="^(open|approved|merged|closed|rejected|reverted|all)$",
        description="Filter by status",
    ),
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestListResponse:
    rows = await mr_service.list_merge_requests(ctx, project_id, status=mr_status)
    return MergeRequestListResponse(merge_requests=rows)


@router.post(
    _BASE,
    response_model=MergeRequestResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createMergeRequest",
    summary="Open a merge request",
)
async def create_merge_request(
    project_id: str,
    body: MergeRequestCreateRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    """Reviewers are assigned from the project's active members.

    Returns 400 if source and target are the same branch.
    Returns 404 if either branch is missing.
    """
    return await mr_service.create_merge_request(
        ctx,
        project_id,
        source_branch=body.source_branch,
        target_branch=body.target_branch,
        title=body.title,
        description=body.description,
    )


@router.get(
    _BASE + "/{mr_id}",
    response_model=MergeRequestResponse,
    operation_id="getMergeRequest",
    summary="Get a merge request",
)
async def get_merge_request(
    project_id: str,
    mr_id: int,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    return await mr_service.get_merge_request(ctx, project_id, mr_id)


@router.post(
    _BASE + "/{mr_id}/approve",
    response_model=MergeRequestResponse,
    operation_id="approveMergeRequest",
    summary="Approve a merge request",
)
async def approve_merge_request(
    project_id: str,
    mr_id: int,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    """Returns 403 for the request's creator and for members who are not reviewers."""
    return await mr_service.approve_merge_request(ctx, project_id, mr_id)


@router.post(
    _BASE + "/{mr_id}/request-changes",
    response_model=MergeRequestResponse,
    operation_id="requestMergeRequestChanges",
    summary="Request changes on a merge request",
)
async def request_changes(
    project_id: str,
    mr_id: int,
    body: RequestChangesRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    return await mr_service.request_changes(ctx, project_id, mr_id, body.comment)


@router.post(
    _BASE + "/{mr_id}/merge",
    response_model=MergeRequestResponse,
    operation_id="mergeMergeRequest",
    summary="Complete a merge (manager only)",
)
async def complete_merge(
    project_id: str,
    mr_id: int,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    """Overwrites the target's snapshot with the source's and records a merge commit.

    Returns 409 if the request still needs approval or is no longer active.
    """
    return await mr_service.complete_merge(ctx, project_id, mr_id)


@router.post(
    _BASE + "/{mr_id}/revert",
    response_model=MergeRequestResponse,
    operation_id="revertMergeRequest",
    summary="Undo a completed merge (manager only)",
)
async def revert_merge(
    project_id: str,
    mr_id: int,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    return await mr_service.revert_merge(ctx, project_id, mr_id)


@router.post(
    _BASE + "/{mr_id}/close",
    response_model=MergeRequestResponse,
    operation_id="closeMergeRequest",
    summary="Close a merge request without merging",
)
async def close_merge_request(
    project_id: str,
    mr_id: int,
    ctx: CommandContext = Depends(get_command_context),
) -> MergeRequestResponse:
    return await mr_service.close_merge_request(ctx, project_id, mr_id)
