"""Identifier generation for commits, invitations, and merge requests.

Commit hashes are short, human-quotable identifiers rather than content
addresses: the current millisecond is mixed in so that committing the same
message twice yields two distinct hashes.  Global uniqueness is still enforced
by the ``designhub_commits.hash`` unique constraint.
"""
from __future__ import annotations

import hashlib
import time
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.db import designhub_models as db
from designhub.db.models import PLACEHOLDER_USER_PREFIX

COMMIT_HASH_LENGTH = 12


def commit_hash(
    project_id: str,
    branch_id: str,
    message: str,
    author_id: str,
    parent_hash: str | None = None,
    *,
    now_ms: int | None = None,
) -> str:
    """Return the 12-hex-char id for a new commit.

    SHA-256 over ``project-branch-message-author-parent-now_ms``; a missing
    parent contributes an empty field.
    """
    if now_ms is None:
        now_ms = time.time_ns() // 1_000_000
    material = f"{project_id}-{branch_id}-{message}-{author_id}-{parent_hash or ''}-{now_ms}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:COMMIT_HASH_LENGTH]


def new_invitation_token() -> str:
    """128-bit random invitation token."""
    return uuid.uuid4().hex


def new_placeholder_user_id() -> str:
    """User id for an invited person who has not logged in yet."""
    return f"{PLACEHOLDER_USER_PREFIX}{uuid.uuid4().hex}"


async def next_merge_request_id(session: AsyncSession, project_id: str) -> int:
    """Return max(merge_request_id) + 1 for the project (1 for the first MR).

    Two racing callers can read the same maximum; the
    ``(project_id, merge_request_id)`` unique constraint rejects the loser.
    """
    stmt = select(func.max(db.DesignMergeRequest.merge_request_id)).where(
        db.DesignMergeRequest.project_id == project_id
    )
    current = (await session.execute(stmt)).scalar_one_or_none()
    return (current or 0) + 1
