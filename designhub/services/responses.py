"""ORM row → wire model converters shared by the DesignHub services."""
from __future__ import annotations

from typing import Any

from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.models.designhub import (
    BranchResponse,
    CommitChanges,
    CommitResponse,
    LastCommit,
    MergeRequestResponse,
    MergeRequestStats,
    ProjectResponse,
    ProjectSettings,
    ReviewerEntry,
    SnapshotRef,
    TeamMemberResponse,
    UserResponse,
)


def to_user_response(row: User) -> UserResponse:
    return UserResponse(
        user_id=row.user_id,
        email=row.email,
        name=row.name,
        avatar_url=row.avatar_url,
        preferences=dict(row.preferences or {}),
        created_at=row.created_at,
        last_login_at=row.last_login_at,
    )


def to_project_response(row: db.DesignProject, role: str | None = None) -> ProjectResponse:
    return ProjectResponse(
        project_id=row.project_id,
        name=row.name,
        description=row.description,
        owner_id=row.owner_id,
        settings=ProjectSettings.model_validate(row.settings or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
        role=role,
    )


def to_branch_response(row: db.DesignBranch) -> BranchResponse:
    last_commit = LastCommit.model_validate(row.last_commit) if row.last_commit else None
    return BranchResponse(
        branch_id=row.branch_id,
        project_id=row.project_id,
        name=row.name,
        type=row.type,
        description=row.description,
        base_branch=row.base_branch,
        created_by=row.created_by,
        is_primary=row.is_primary,
        status=row.status,
        last_commit=last_commit,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def to_commit_response(row: db.DesignCommit) -> CommitResponse:
    return CommitResponse(
        hash=row.hash,
        project_id=row.project_id,
        branch_id=row.branch_id,
        message=row.message,
        author_id=row.author_id,
        timestamp=row.timestamp,
        parent_commit_hash=row.parent_commit_hash,
        merge_parent_hash=row.merge_parent_hash,
        changes=CommitChanges.model_validate(row.changes or {}),
        snapshot=SnapshotRef(file_url=row.file_url, thumbnail_url=row.thumbnail_url),
    )


def to_merge_request_response(row: db.DesignMergeRequest) -> MergeRequestResponse:
    reviewers = [ReviewerEntry.model_validate(r) for r in row.reviewers or []]
    return MergeRequestResponse(
        project_id=row.project_id,
        merge_request_id=row.merge_request_id,
        source_branch=row.source_branch,
        target_branch=row.target_branch,
        title=row.title,
        description=row.description,
        status=row.status,
        created_by=row.created_by,
        reviewers=reviewers,
        stats=MergeRequestStats.model_validate(row.stats or {}),
        approved_count=sum(1 for r in reviewers if r.status == "approved"),
        merge_commit_hash=row.merge_commit_hash,
        revert_commit_hash=row.revert_commit_hash,
        created_at=row.created_at,
        updated_at=row.updated_at,
        merged_at=row.merged_at,
        merged_by=row.merged_by,
        reverted_at=row.reverted_at,
        reverted_by=row.reverted_by,
        closed_at=row.closed_at,
        closed_by=row.closed_by,
    )


def to_team_member_response(
    row: db.DesignTeamMember, user: User | None = None
) -> TeamMemberResponse:
    return TeamMemberResponse(
        user_id=row.user_id,
        email=row.email,
        name=user.name if user else None,
        avatar_url=user.avatar_url if user else None,
        role=row.role,
        status=row.status,
        invited_by=row.invited_by,
        invited_at=row.invited_at,
        joined_at=row.joined_at,
    )


def wire(model: Any) -> dict[str, Any]:
    """JSON-ready camelCase dict of a response model (event payloads)."""
    return model.model_dump(mode="json", by_alias=True)
