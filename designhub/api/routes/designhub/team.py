"""DesignHub team route handlers.

Endpoint summary:
  GET    /designhub/projects/{project_id}/team                  — list members
  POST   /designhub/projects/{project_id}/team/invite           — invite by email (manager)
  POST   /designhub/projects/{project_id}/team/designers        — add an active designer (manager)
  PUT    /designhub/projects/{project_id}/team/{user_id}/role   — change a role (manager)
  DELETE /designhub/projects/{project_id}/team/{user_id}        — remove a member (manager)
  POST   /designhub/invitations/accept                          — accept an invitation
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status

from designhub.api.dependencies import get_command_context
from designhub.models.designhub import (
    AcceptInvitationRequest,
    AddDesignerRequest,
    InviteMemberRequest,
    InviteMemberResponse,
    RoleUpdateRequest,
    TeamListResponse,
    TeamMemberResponse,
)
from designhub.services import team as team_service
from designhub.services.context import CommandContext

router = APIRouter()


@router.get(
    "/projects/{project_id}/team",
    response_model=TeamListResponse,
    operation_id="listTeamMembers",
    summary="List team members",
)
async def list_team_members(
    project_id: str,
    ctx: CommandContext = Depends(get_command_context),
) -> TeamListResponse:
    return TeamListResponse(members=await team_service.list_team_members(ctx, project_id))


@router.post(
    "/projects/{project_id}/team/invite",
    response_model=InviteMemberResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="inviteTeamMember",
    summary="Invite someone to the project by email",
)
async def invite_member(
    project_id: str,
    body: InviteMemberRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> InviteMemberResponse:
    """Creates a pending membership and emails the invitation link.

    Returns 409 if the address already belongs to a member.
    """
    return await team_service.invite_member(ctx, project_id, email=body.email, role=body.role)


@router.post(
    "/projects/{project_id}/team/designers",
    response_model=TeamMemberResponse,
    status_code=status.HTTP_201_CREATED,
    operation_id="addDesigner",
    summary="Add an active designer without an invitation",
)
async def add_designer(
    project_id: str,
    body: AddDesignerRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> TeamMemberResponse:
    return await team_service.add_designer(ctx, project_id, name=body.name, email=body.email)


@router.put(
    "/projects/{project_id}/team/{user_id}/role",
    response_model=TeamMemberResponse,
    operation_id="updateTeamMemberRole",
    summary="Change a member's role",
)
async def update_member_role(
    project_id: str,
    user_id: str,
    body: RoleUpdateRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> TeamMemberResponse:
    """Returns 409 when demoting the project's last active manager."""
    return await team_service.update_member_role(ctx, project_id, user_id, body.role)


@router.delete(
    "/projects/{project_id}/team/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    operation_id="removeTeamMember",
    summary="Remove a member",
)
async def remove_member(
    project_id: str,
    user_id: str,
    ctx: CommandContext = Depends(get_command_context),
) -> Response:
    await team_service.remove_member(ctx, project_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/invitations/accept",
    response_model=TeamMemberResponse,
    operation_id="acceptInvitation",
    summary="Accept a team invitation",
)
async def accept_invitation(
    body: AcceptInvitationRequest,
    ctx: CommandContext = Depends(get_command_context),
) -> TeamMemberResponse:
    """Returns 404 for an unknown token and 410 once the invitation has expired."""
    return await team_service.accept_invitation(ctx, body.token)
