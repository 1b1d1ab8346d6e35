"""SQLAlchemy ORM models for DesignHub — the design repository metadata store.

Tables:
- designhub_projects: One row per design project (external stable id)
- designhub_team_members: Access-control join between users and projects
- designhub_branches: Named lines of development inside a project
- designhub_commits: Immutable snapshot records forming per-branch history
- designhub_merge_requests: Review-gated proposals to merge one branch into another
- designhub_blobs / designhub_blob_chunks: Chunked object-store backend

Uniqueness invariants live here as constraints so that a race between two
writers surfaces as ``IntegrityError`` rather than as duplicate rows:
- project_id is unique
- (project_id, user_id) is unique for team members
- (project_id, name) is unique among branches whose status is not ``deleted``
- at most one primary branch per project
- commit hash is globally unique
- (project_id, merge_request_id) is unique
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from designhub.db.database import Base


def _utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def default_project_settings() -> dict[str, Any]:
    return {
        "branchProtection": {
            "requireApproval": True,
            "minReviews": 2,
            "autoDeleteMerged": False,
        },
        "notifications": {
            "onMergeRequest": True,
            "onBranchUpdate": True,
        },
    }


def default_commit_changes() -> dict[str, int]:
    return {
        "filesAdded": 0,
        "filesModified": 0,
        "filesDeleted": 0,
        "componentsUpdated": 0,
    }


def default_mr_stats() -> dict[str, int]:
    return {"filesChanged": 0, "componentsUpdated": 0}


class DesignProject(Base):
    """A design project.

    ``settings`` is a JSON document with ``branchProtection`` and
    ``notifications`` sections; JSON columns are only persisted on
    reassignment, so callers always write a fresh dict.
    """

    __tablename__ = "designhub_projects"

    project_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    settings: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=default_project_settings
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, onupdate=_utc_now
    )

    branches: Mapped[list[DesignBranch]] = relationship(
        "DesignBranch", back_populates="project", cascade="all, delete-orphan"
    )
    team_members: Mapped[list[DesignTeamMember]] = relationship(
        "DesignTeamMember", back_populates="project", cascade="all, delete-orphan"
    )


class DesignTeamMember(Base):
    """Membership of a user in a project.

    ``role`` is ``manager`` or ``designer``.  ``status`` moves
    ``pending`` → ``active`` when an invitation is accepted; direct adds start
    ``active``.
    """

    __tablename__ = "designhub_team_members"
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_designhub_member_project_user"),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("designhub_projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="designer")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    invitation_token: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True, index=True
    )
    invited_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    invited_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    project: Mapped[DesignProject] = relationship("DesignProject", back_populates="team_members")


class DesignBranch(Base):
    """A named branch inside a project.

    ``last_commit`` is a denormalized copy of the tip commit
    (``{hash, message, timestamp, authorId}``); readers must tolerate it lagging
    the commits table for the instant between the two metadata writes.
    """

    __tablename__ = "designhub_branches"
    __table_args__ = (
        # Deleted branches free their name for reuse.
        Index(
            "uq_designhub_branch_live_name",
            "project_id",
            "name",
            unique=True,
            sqlite_where=text("status != 'deleted'"),
            postgresql_where=text("status != 'deleted'"),
        ),
        Index(
            "uq_designhub_branch_primary",
            "project_id",
            unique=True,
            sqlite_where=text("is_primary = 1"),
            postgresql_where=text("is_primary"),
        ),
    )

    branch_id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("designhub_projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    base_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    is_primary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", index=True)
    last_commit: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    project: Mapped[DesignProject] = relationship("DesignProject", back_populates="branches")


class DesignCommit(Base):
    """An immutable commit record.

    ``parent_commit_hash`` points backwards along the branch history.  Merge
    commits additionally carry ``merge_parent_hash``, the source branch tip
    that was taken.
    """

    __tablename__ = "designhub_commits"
    __table_args__ = (
        Index("ix_designhub_commits_branch_time", "project_id", "branch_id", "timestamp"),
    )

    # Surrogate key; also breaks ties between commits written in the same instant.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    hash: Mapped[str] = mapped_column(String(12), nullable=False, unique=True, index=True)
    project_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("designhub_projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    branch_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("designhub_branches.branch_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[str] = mapped_column(String(255), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    parent_commit_hash: Mapped[str | None] = mapped_column(String(12), nullable=True)
    merge_parent_hash: Mapped[str | None] = mapped_column(String(12), nullable=True)
    changes: Mapped[dict[str, int]] = mapped_column(
        JSON, nullable=False, default=default_commit_changes
    )
    # Store-relative blob path, e.g. "projects/P1/branches/<id>/commits/<hash>.json"
    file_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    thumbnail_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)


class DesignMergeRequest(Base):
    """A review-gated proposal to merge ``source_branch`` into ``target_branch``.

    Branches are referenced by name, which stays stable across branch-id
    rewrites.  ``reviewers`` is an ordered JSON list of
    ``{userId, status, reviewedAt, comment}`` deduplicated by ``userId``.
    ``merge_commit_hash`` is the explicit back-reference used by revert-merge.
    """

    __tablename__ = "designhub_merge_requests"
    __table_args__ = (
        UniqueConstraint(
            "project_id", "merge_request_id", name="uq_designhub_mr_project_number"
        ),
    )

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    project_id: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("designhub_projects.project_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Sequential per-project number (1, 2, 3…)
    merge_request_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    source_branch: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    target_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open", index=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewers: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    stats: Mapped[dict[str, int]] = mapped_column(JSON, nullable=False, default=default_mr_stats)
    merge_commit_hash: Mapped[str | None] = mapped_column(String(12), nullable=True)
    revert_commit_hash: Mapped[str | None] = mapped_column(String(12), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    merged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    merged_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reverted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reverted_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)


class DesignBlob(Base):
    """File entry of the chunked object-store backend.

    ``filename`` is the store path and the lookup key.  ``project_id``,
    ``branch_id`` and ``commit_hash`` are parsed from the path for operators;
    the store itself never queries by them.
    """

    __tablename__ = "designhub_blobs"

    filename: Mapped[str] = mapped_column(String(1024), primary_key=True)
    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    branch_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    commit_hash: Mapped[str | None] = mapped_column(String(12), nullable=True)
    length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chunk_size: Mapped[int] = mapped_column(Integer, nullable=False)
    upload_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )


class DesignBlobChunk(Base):
    """One ordered chunk of a :class:`DesignBlob`."""

    __tablename__ = "designhub_blob_chunks"
    __table_args__ = (
        UniqueConstraint("filename", "n", name="uq_designhub_blob_chunk_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    filename: Mapped[str] = mapped_column(
        String(1024),
        ForeignKey("designhub_blobs.filename", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    n: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
