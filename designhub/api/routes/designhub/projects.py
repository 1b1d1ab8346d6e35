"""DesignHub project route handlers.

Endpoint summary:
  POST  /designhub/projects                        — register a project
  GET   /designhub/projects                        — projects the caller belongs to
  GET   /designhub/projects/{project_id}           — one project with the caller's role
  PATCH /designhub/projects/{project_id}/settings  — update settings (manager)

No business logic lives here; everything is delegated to
designhub.services.projects.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from designhub.api.dependencies import get_command_context
from designhub.models.designhub import (
    ProjectCreateRequest,
    ProjectListResponse,
    ProjectResponse,
    ProjectSettingsUpdate,
)
from designhub.services import projects as project_service
from designhub.services.context import CommandContext

router = APIRouter()


@router.post(
    "/projects",
    response_model=ProjectResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="createProject",
    summary="Register a design project",
)
async def create_project(
    body: ProjectCreateRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> ProjectResponse:
    """Create the project, its ``main`` branch, and the caller's manager membership.

    Returns 409 if the project id is already registered.
    """
    return await project_service.create_project(
        ctx, project_id=body.project_id, name=body.name, description=body.description
    )


@router.get(
    "/projects",
    response_model=ProjectListResponse,
    operation_id="listProjects",
    summary="Projects the caller is an active member of",
)
async def list_projects(ctx: CommandContext = Depends(get_command_context)) -> ProjectListResponse:
    return ProjectListResponse(projects=await project_service.list_projects(ctx))


@router.get(
    "/projects/{project_id}",
    response_model=ProjectResponse,
    operation_id="getProject",
    summary="Get one project",
)
async def get_project(
    project_id: str,
    ctx: CommandContext = Depends(get_command_context),
) -> ProjectResponse:
    return await project_service.get_project(ctx, project_id)


@router.patch(
    "/projects/{project_id}/settings",
    response_model=ProjectResponse,
    operation_id="updateProjectSettings",
    summary="Update branch protection and notification settings",
)
async def update_project_settings(
    project_id: str,
    body: ProjectSettingsUpdate,
    ctx: CommandContext = Depends(get_command_context),
) -> ProjectResponse:
    """Merge the supplied fields into the stored settings; omitted fields keep their value."""
    return await project_service.update_project_settings(ctx, project_id, body)
