"""Consolidated schema — all tables, single migration.

Revision ID: 0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

THIS IS THE ONLY MIGRATION. New tables are folded in here during
development. Do NOT create new migration files — add tables directly to
upgrade() and their drops (in reverse order) to the top of downgrade().

Single source-of-truth migration for DesignHub. Creates:

  Accounts
  - designhub_users (real logins and invitation placeholders)

  Design repository metadata
  - designhub_projects (settings JSON: branchProtection, notifications)
  - designhub_team_members (per-project role and invitation state)
  - designhub_branches (live-name and single-primary partial unique indexes)
  - designhub_commits (merge_parent_hash records the source tip of merges)
  - designhub_merge_requests (reviewers JSON; merge/revert back-references)

  Object store (database backend)
  - designhub_blobs, designhub_blob_chunks

Fresh install:
  alembic upgrade head
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    # ── Accounts ──────────────────────────────────────────────────────────
    op.create_table(
        "designhub_users",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("avatar_url", sa.String(2048), nullable=True),
        sa.Column("preferences", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_designhub_users_user_id", "designhub_users", ["user_id"], unique=True)
    op.create_index("ix_designhub_users_email", "designhub_users", ["email"], unique=True)

    # ── Projects & team ───────────────────────────────────────────────────
    op.create_table(
        "designhub_projects",
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("owner_id", sa.String(255), nullable=False),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.PrimaryKeyConstraint("project_id"),
    )
    op.create_index("ix_designhub_projects_owner_id", "designhub_projects", ["owner_id"])

    op.create_table(
        "designhub_team_members",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default="designer"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("invitation_token", sa.String(64), nullable=True),
        sa.Column("invited_by", sa.String(255), nullable=True),
        sa.Column("invited_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(
            ["project_id"], ["designhub_projects.project_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", "user_id", name="uq_designhub_member_project_user"),
    )
    op.create_index("ix_designhub_team_members_project_id", "designhub_team_members", ["project_id"])
    op.create_index("ix_designhub_team_members_user_id", "designhub_team_members", ["user_id"])
    op.create_index("ix_designhub_team_members_status", "designhub_team_members", ["status"])
    op.create_index(
        "ix_designhub_team_members_invitation_token",
        "designhub_team_members",
        ["invitation_token"],
        unique=True,
    )

    # ── Branches & commits ────────────────────────────────────────────────
    op.create_table(
        "designhub_branches",
        sa.Column("branch_id", sa.String(32), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("base_branch", sa.String(255), nullable=False),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("last_commit", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.ForeignKeyConstraint(
            ["project_id"], ["designhub_projects.project_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("branch_id"),
    )
    op.create_index("ix_designhub_branches_project_id", "designhub_branches", ["project_id"])
    op.create_index("ix_designhub_branches_status", "designhub_branches", ["status"])
    op.create_index("ix_designhub_branches_created_at", "designhub_branches", ["created_at"])
    # Deleted branches free their name for reuse.
    op.create_index(
        "uq_designhub_branch_live_name",
        "designhub_branches",
        ["project_id", "name"],
        unique=True,
        sqlite_where=sa.text("status != 'deleted'"),
        postgresql_where=sa.text("status != 'deleted'"),
    )
    op.create_index(
        "uq_designhub_branch_primary",
        "designhub_branches",
        ["project_id"],
        unique=True,
        sqlite_where=sa.text("is_primary = 1"),
        postgresql_where=sa.text("is_primary"),
    )

    op.create_table(
        "designhub_commits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("hash", sa.String(12), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("branch_id", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("author_id", sa.String(255), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("parent_commit_hash", sa.String(12), nullable=True),
        sa.Column("merge_parent_hash", sa.String(12), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("file_url", sa.String(1024), nullable=False),
        sa.Column("thumbnail_url", sa.String(1024), nullable=True),
        sa.ForeignKeyConstraint(
            ["project_id"], ["designhub_projects.project_id"], ondelete="CASCADE"
        ),
        sa.ForeignKeyConstraint(
            ["branch_id"], ["designhub_branches.branch_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_designhub_commits_hash", "designhub_commits", ["hash"], unique=True)
    op.create_index("ix_designhub_commits_project_id", "designhub_commits", ["project_id"])
    op.create_index("ix_designhub_commits_branch_id", "designhub_commits", ["branch_id"])
    op.create_index(
        "ix_designhub_commits_branch_time",
        "designhub_commits",
        ["project_id", "branch_id", "timestamp"],
    )

    # ── Merge requests ────────────────────────────────────────────────────
    op.create_table(
        "designhub_merge_requests",
        sa.Column("id", sa.String(32), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=False),
        sa.Column("merge_request_id", sa.Integer(), nullable=False),
        sa.Column("source_branch", sa.String(255), nullable=False),
        sa.Column("target_branch", sa.String(255), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("created_by", sa.String(255), nullable=False),
        sa.Column("reviewers", sa.JSON(), nullable=False),
        sa.Column("stats", sa.JSON(), nullable=False),
        sa.Column("merge_commit_hash", sa.String(12), nullable=True),
        sa.Column("revert_commit_hash", sa.String(12), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.Column("merged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("merged_by", sa.String(255), nullable=True),
        sa.Column("reverted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reverted_by", sa.String(255), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(
            ["project_id"], ["designhub_projects.project_id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "project_id", "merge_request_id", name="uq_designhub_mr_project_number"
        ),
    )
    op.create_index(
        "ix_designhub_merge_requests_project_id", "designhub_merge_requests", ["project_id"]
    )
    op.create_index(
        "ix_designhub_merge_requests_merge_request_id",
        "designhub_merge_requests",
        ["merge_request_id"],
    )
    op.create_index(
        "ix_designhub_merge_requests_source_branch", "designhub_merge_requests", ["source_branch"]
    )
    op.create_index("ix_designhub_merge_requests_status", "designhub_merge_requests", ["status"])
    op.create_index(
        "ix_designhub_merge_requests_created_at", "designhub_merge_requests", ["created_at"]
    )

    # ── Object store (database backend) ───────────────────────────────────
    op.create_table(
        "designhub_blobs",
        sa.Column("filename", sa.String(1024), nullable=False),
        sa.Column("project_id", sa.String(255), nullable=True),
        sa.Column("branch_id", sa.String(32), nullable=True),
        sa.Column("commit_hash", sa.String(12), nullable=True),
        sa.Column("length", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chunk_size", sa.Integer(), nullable=False),
        sa.Column("upload_date", sa.DateTime(timezone=True), nullable=False, server_default=_NOW),
        sa.PrimaryKeyConstraint("filename"),
    )
    op.create_index("ix_designhub_blobs_project_id", "designhub_blobs", ["project_id"])

    op.create_table(
        "designhub_blob_chunks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("filename", sa.String(1024), nullable=False),
        sa.Column("n", sa.Integer(), nullable=False),
        sa.Column("data", sa.LargeBinary(), nullable=False),
        sa.ForeignKeyConstraint(
            ["filename"], ["designhub_blobs.filename"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("filename", "n", name="uq_designhub_blob_chunk_order"),
    )
    op.create_index("ix_designhub_blob_chunks_filename", "designhub_blob_chunks", ["filename"])


def downgrade() -> None:
    # Drop in reverse creation order, respecting foreign-key dependencies.
    op.drop_index("ix_designhub_blob_chunks_filename", table_name="designhub_blob_chunks")
    op.drop_table("designhub_blob_chunks")
    op.drop_index("ix_designhub_blobs_project_id", table_name="designhub_blobs")
    op.drop_table("designhub_blobs")

    for index in (
        "ix_designhub_merge_requests_created_at",
        "ix_designhub_merge_requests_status",
        "ix_designhub_merge_requests_source_branch",
        "ix_designhub_merge_requests_merge_request_id",
        "ix_designhub_merge_requests_project_id",
    ):
        op.drop_index(index, table_name="designhub_merge_requests")
    op.drop_table("designhub_merge_requests")

    for index in (
        "ix_designhub_commits_branch_time",
        "ix_designhub_commits_branch_id",
        "ix_designhub_commits_project_id",
        "ix_designhub_commits_hash",
    ):
        op.drop_index(index, table_name="designhub_commits")
    op.drop_table("designhub_commits")

    for index in (
        "uq_designhub_branch_primary",
        "uq_designhub_branch_live_name",
        "ix_designhub_branches_created_at",
        "ix_designhub_branches_status",
        "ix_designhub_branches_project_id",
    ):
        op.drop_index(index, table_name="designhub_branches")
    op.drop_table("designhub_branches")

    for index in (
        "ix_designhub_team_members_invitation_token",
        "ix_designhub_team_members_status",
        "ix_designhub_team_members_user_id",
        "ix_designhub_team_members_project_id",
    ):
        op.drop_index(index, table_name="designhub_team_members")
    op.drop_table("designhub_team_members")

    op.drop_index("ix_designhub_projects_owner_id", table_name="designhub_projects")
    op.drop_table("designhub_projects")

    op.drop_index("ix_designhub_users_email", table_name="designhub_users")
    op.drop_index("ix_designhub_users_user_id", table_name="designhub_users")
    op.drop_table("designhub_users")
