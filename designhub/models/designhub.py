"""Pydantic v2 request/response models for the DesignHub API.

All wire-format fields use camelCase via CamelModel.  Python code uses
snake_case throughout; only serialisation to JSON uses camelCase.

Snapshots travel as JSON objects (``{version, timestamp, pages: [...]}``) and
are otherwise opaque: no model here looks inside them.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import Field, field_validator

from designhub.models.base import CamelModel

BranchType = Literal["main", "feature", "hotfix", "design", "experiment"]
BranchStatus = Literal["active", "merged", "deleted"]
MergeRequestStatus = Literal["open", "approved", "merged", "closed", "rejected", "reverted"]
ReviewerStatus = Literal["pending", "approved", "requested_changes", "rejected"]
MemberStatus = Literal["pending", "active", "inactive"]

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# Path segments the by-id branch routes use; a branch name containing one
# would be shadowed by those routes.
RESERVED_BRANCH_SEGMENTS = frozenset({"snapshot", "revert"})


# ── Auth ──────────────────────────────────────────────────────────────────────


class UserResponse(CamelModel):
    """Public profile of a user."""

    user_id: str
    email: str
    name: str
    avatar_url: str | None = None
    preferences: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime | None = None
    last_login_at: datetime | None = None


class LoginRequest(CamelModel):
    """Body for POST /auth/login.

    ``adobe_token`` is the editor's sign-in provider token; it is handed to the
    configured identity verifier together with the claimed identity.
    """

    adobe_token: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., pattern=_EMAIL_PATTERN, max_length=320)
    name: str = Field(..., min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=2048)


class LoginResponse(CamelModel):
    token: str
    refresh_token: str
    user: UserResponse


class RefreshRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class RefreshResponse(CamelModel):
    token: str
    refresh_token: str


# ── Projects ──────────────────────────────────────────────────────────────────


class BranchProtection(CamelModel):
    require_approval: bool = True
    min_reviews: int = Field(2, ge=0)
    auto_delete_merged: bool = False


class NotificationSettings(CamelModel):
    on_merge_request: bool = True
    on_branch_update: bool = True


class ProjectSettings(CamelModel):
    branch_protection: BranchProtection = Field(default_factory=BranchProtection)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)


class BranchProtectionUpdate(CamelModel):
    """Partial update; omitted fields keep their stored value."""

    require_approval: bool | None = None
    min_reviews: int | None = Field(None, ge=0)
    auto_delete_merged: bool | None = None


class NotificationSettingsUpdate(CamelModel):
    on_merge_request: bool | None = None
    on_branch_update: bool | None = None


class ProjectSettingsUpdate(CamelModel):
    """Body for PATCH /designhub/projects/{projectId}/settings."""

    branch_protection: BranchProtectionUpdate | None = None
    notifications: NotificationSettingsUpdate | None = None


class ProjectCreateRequest(CamelModel):
    """Body for POST /designhub/projects.

    ``project_id`` is the editor's stable document id, chosen by the client.
    """

    project_id: str = Field(..., min_length=1, max_length=255, pattern=r"^[^/\s]+$")
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)


class ProjectResponse(CamelModel):
    project_id: str
    name: str
    description: str
    owner_id: str
    settings: ProjectSettings
    created_at: datetime
    updated_at: datetime
    # Role of the requesting user in this project, when known
    role: str | None = None


class ProjectListResponse(CamelModel):
    projects: list[ProjectResponse]


# ── Branches & commits ────────────────────────────────────────────────────────


class LastCommit(CamelModel):
    """Denormalized projection of a branch tip."""

    hash: str
    message: str
    timestamp: datetime
    author_id: str


class BranchResponse(CamelModel):
    branch_id: str
    project_id: str
    name: str
    type: str
    description: str
    base_branch: str
    created_by: str
    is_primary: bool
    status: str
    last_commit: LastCommit | None = None
    created_at: datetime
    updated_at: datetime


class CommitChanges(CamelModel):
    files_added: int = Field(0, ge=0)
    files_modified: int = Field(0, ge=0)
    files_deleted: int = Field(0, ge=0)
    components_updated: int = Field(0, ge=0)


class SnapshotRef(CamelModel):
    """Where a commit's snapshot blob lives in the object store."""

    file_url: str
    thumbnail_url: str | None = None


class CommitResponse(CamelModel):
    hash: str
    project_id: str
    branch_id: str
    message: str
    author_id: str
    timestamp: datetime
    parent_commit_hash: str | None = None
    merge_parent_hash: str | None = None
    changes: CommitChanges
    snapshot: SnapshotRef


class BranchDetailResponse(BranchResponse):
    """A branch plus its most recent commits, newest first."""

    recent_commits: list[CommitResponse] = Field(default_factory=list)


class BranchCreateRequest(CamelModel):
    """Body for POST /designhub/projects/{projectId}/branches.

    The stored branch name is ``"{type}/{name}"``.
    """

    name: str = Field(..., min_length=1, max_length=200, pattern=r"^[^\s]+$")
    type: Literal["feature", "hotfix", "design", "experiment"] = "feature"
    description: str = Field("", max_length=5000)
    base_branch: str = Field("main", min_length=1, max_length=255)

    @field_validator("name")
    @classmethod
    def _no_reserved_segments(cls, value: str) -> str:
        reserved = RESERVED_BRANCH_SEGMENTS.intersection(value.split("/"))
        if reserved:
            raise ValueError(f"'{sorted(reserved)[0]}' is reserved and cannot be used in a branch name")
        return value


class CommitCreateRequest(CamelModel):
    """Body for POST /designhub/projects/{projectId}/commits."""

    branch_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=5000)
    snapshot: dict[str, Any]
    changes: CommitChanges | None = None
    thumbnail_url: str | None = Field(None, max_length=2048)


class HistoryResponse(CamelModel):
    commits: list[CommitResponse]


class RevertResponse(CamelModel):
    """The new commit written by a revert and the commit it restored."""

    commit: CommitResponse
    reverted_to: CommitResponse


class BranchListResponse(CamelModel):
    branches: list[BranchResponse]


class SnapshotSaveRequest(CamelModel):
    snapshot: dict[str, Any]


class SnapshotResponse(CamelModel):
    branch_id: str
    has_snapshot: bool
    snapshot: dict[str, Any] | None = None
    # Store path the snapshot was read from (or written to)
    path: str | None = None


class CheckoutRequest(CamelModel):
    """Body for POST /designhub/projects/{projectId}/checkout.

    ``current_snapshot`` is the caller's working state of ``source_branch_id``;
    it is saved only when the caller may write that branch.
    """

    source_branch_id: str | None = None
    target_branch_id: str = Field(..., min_length=1)
    current_snapshot: dict[str, Any] | None = None


class CheckoutResponse(CamelModel):
    branch: BranchResponse
    has_snapshot: bool
    snapshot: dict[str, Any] | None = None
    snapshot_path: str | None = None
    source_saved: bool = False


# ── Merge requests ────────────────────────────────────────────────────────────


class ReviewerEntry(CamelModel):
    user_id: str
    status: ReviewerStatus = "pending"
    reviewed_at: datetime | None = None
    comment: str | None = None


class MergeRequestStats(CamelModel):
    files_changed: int = 0
    components_updated: int = 0


class MergeRequestResponse(CamelModel):
    project_id: str
    merge_request_id: int
    source_branch: str
    target_branch: str
    title: str
    description: str
    status: MergeRequestStatus
    created_by: str
    reviewers: list[ReviewerEntry]
    stats: MergeRequestStats
    approved_count: int = 0
    merge_commit_hash: str | None = None
    revert_commit_hash: str | None = None
    created_at: datetime
    updated_at: datetime
    merged_at: datetime | None = None
    merged_by: str | None = None
    reverted_at: datetime | None = None
    reverted_by: str | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None


class MergeRequestCreateRequest(CamelModel):
    source_branch: str = Field(..., min_length=1)
    target_branch: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field("", max_length=10000)


class RequestChangesRequest(CamelModel):
    comment: str | None = Field(None, max_length=10000)


class MergeRequestListResponse(CamelModel):
    merge_requests: list[MergeRequestResponse]


# ── Team ──────────────────────────────────────────────────────────────────────


class TeamMemberResponse(CamelModel):
    user_id: str
    email: str
    name: str | None = None
    avatar_url: str | None = None
    role: str
    status: MemberStatus
    invited_by: str | None = None
    invited_at: datetime
    joined_at: datetime | None = None


class InviteMemberRequest(CamelModel):
    """Body for POST /team/invite.

    Legacy role names (owner, admin, viewer) are accepted and normalized.
    """

    email: str = Field(..., pattern=_EMAIL_PATTERN, max_length=320)
    role: str = "designer"


class InviteMemberResponse(CamelModel):
    member: TeamMemberResponse
    invitation_token: str


class AcceptInvitationRequest(CamelModel):
    token: str = Field(..., min_length=1)


class RoleUpdateRequest(CamelModel):
    role: str = Field(..., min_length=1)


class AddDesignerRequest(CamelModel):
    """Body for POST /team/designers — adds an active designer directly."""

    name: str = Field(..., min_length=1, max_length=255)
    email: str | None = Field(None, pattern=_EMAIL_PATTERN, max_length=320)


class TeamListResponse(CamelModel):
    members: list[TeamMemberResponse]
