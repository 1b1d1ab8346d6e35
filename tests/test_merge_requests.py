"""Tests for the merge-request engine.

Covers:
- open → approved at the threshold → merged (take source) → reverted
- the merge commit: parent is the target's old tip, merge parent is the source tip
- revert-merge restores the target's pre-merge bytes via the recorded back-reference
- creators never approve, request changes on, or merge their own request
- only seeded reviewers review; managers are appended on first review
- request-changes drops an approved request back to open
- settings: requireApproval, minReviews, autoDeleteMerged
- open merge requests block deleting their source branch
- e-mail notifications and realtime events
"""
from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import select

from designhub.db import designhub_models as db
from designhub.errors import ConflictError, ForbiddenError, InvalidInputError, NotFoundError
from designhub.models.designhub import (
    BranchProtectionUpdate,
    MergeRequestResponse,
    NotificationSettingsUpdate,
    ProjectSettingsUpdate,
)
from designhub.services import merge_requests, projects, repository
from designhub.services.context import CommandContext
from designhub.services.events import CapturingEventSink
from designhub.services.merge_request_state import InvalidTransitionError, MergeRequestStatus
from designhub.services.notifier import CapturingNotifier
from designhub.services.object_store import FilesystemObjectStore, current_path


def snapshot_with(elements: int) -> bytes:
    items = ",".join(f'{{"id":"el-{i}"}}' for i in range(elements))
    return ('{"version":"1.0","pages":[{"artboards":[{"elements":[' + items + "]}]}]}").encode()


async def _set_protection(ctx: CommandContext, project_id: str, **values: object) -> None:
    update = ProjectSettingsUpdate(branch_protection=BranchProtectionUpdate(**values))
    await projects.update_project_settings(ctx, project_id, update)


async def _feature_branch(
    ctx: CommandContext, project_id: str, owner: str, name: str, elements: int = 3
) -> str:
    """Create ``feature/{name}`` as ``owner`` with one commit; returns the branch id."""
    actor = ctx.as_actor(owner)
    branch = await repository.create_branch(
        actor, project_id, name=name, branch_type="feature", base_branch="main"
    )
    await repository.create_commit(
        actor, project_id, branch_id=branch.branch_id, message=f"{name} work",
        snapshot=snapshot_with(elements),
    )
    return branch.branch_id


async def _open(
    ctx: CommandContext, project_id: str, creator: str, source: str, title: str = "Hero section"
) -> MergeRequestResponse:
    return await merge_requests.create_merge_request(
        ctx.as_actor(creator), project_id, source_branch=source, target_branch="main", title=title
    )


@pytest_asyncio.fixture
async def main_with_one_element(ctx: CommandContext, project: str) -> str:
    main = await repository.get_branch_by_name(ctx.session, project, "main")
    await repository.create_commit(
        ctx, project, branch_id=main.branch_id, message="baseline", snapshot=snapshot_with(1)
    )
    return main.branch_id


# ---------------------------------------------------------------------------
# Full lifecycle
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_merge_takes_source_and_revert_restores_target(
    ctx: CommandContext,
    project: str,
    store: FilesystemObjectStore,
    main_with_one_element: str,
) -> None:
    main_id = main_with_one_element
    baseline_tip = (await repository.list_history(ctx, project, branch_name="main"))[0].hash
    b_id = await _feature_branch(ctx, project, "U2", "b", elements=3)
    b_tip = (await repository.list_history(ctx, project, branch_name="feature/b"))[0].hash

    mr = await _open(ctx, project, "U2", "feature/b")
    assert mr.merge_request_id == 1
    assert mr.status is MergeRequestStatus.OPEN
    assert {r.user_id for r in mr.reviewers} == {"U3", "U4"}

    mr = await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)
    assert mr.status is MergeRequestStatus.OPEN
    assert mr.approved_count == 1
    mr = await merge_requests.approve_merge_request(ctx.as_actor("U4"), project, 1)
    assert mr.status is MergeRequestStatus.APPROVED

    mr = await merge_requests.complete_merge(ctx, project, 1)
    assert mr.status is MergeRequestStatus.MERGED
    assert mr.merged_by == "U1"
    assert mr.stats.components_updated == 3
    assert await store.get(current_path(project, main_id)) == await store.get(current_path(project, b_id))

    merge_commit = (await repository.list_history(ctx, project, branch_name="main"))[0]
    assert merge_commit.hash == mr.merge_commit_hash
    assert merge_commit.message == "Merge feature/b into main"
    assert merge_commit.changes.components_updated == 3
    assert merge_commit.parent_commit_hash == baseline_tip
    assert merge_commit.merge_parent_hash == b_tip

    mr = await merge_requests.revert_merge(ctx, project, 1)
    assert mr.status is MergeRequestStatus.REVERTED
    assert mr.reverted_by == "U1"
    assert await store.get(current_path(project, main_id)) == snapshot_with(1)

    history = await repository.list_history(ctx, project, branch_name="main")
    assert [c.hash for c in history[:2]] == [mr.revert_commit_hash, merge_commit.hash]
    assert history[0].message == "Reverted merge #1: Hero section"
    assert history[0].parent_commit_hash == merge_commit.hash


@pytest.mark.asyncio
async def test_revert_falls_back_to_message_scan(
    ctx: CommandContext, project: str, store: FilesystemObjectStore, main_with_one_element: str
) -> None:
    await _feature_branch(ctx, project, "U2", "legacy")
    await _open(ctx, project, "U2", "feature/legacy")
    await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)
    await merge_requests.approve_merge_request(ctx.as_actor("U4"), project, 1)
    await merge_requests.complete_merge(ctx, project, 1)

    stmt = select(db.DesignMergeRequest).where(db.DesignMergeRequest.project_id == project)
    row = (await ctx.session.execute(stmt)).scalar_one()
    row.merge_commit_hash = None
    await ctx.session.commit()

    await merge_requests.revert_merge(ctx, project, 1)
    assert await store.get(current_path(project, main_with_one_element)) == snapshot_with(1)


@pytest.mark.asyncio
async def test_merge_events_and_emails(
    ctx: CommandContext,
    project: str,
    events: CapturingEventSink,
    notifier: CapturingNotifier,
    main_with_one_element: str,
) -> None:
    await _feature_branch(ctx, project, "U2", "b")
    events.clear()

    await _open(ctx, project, "U2", "feature/b")
    assert sorted(e.to for e in notifier.sent) == ["u3@example.com", "u4@example.com"]
    assert all(e.subject == "New Merge Request: Hero section" for e in notifier.sent)
    assert "/projects/P1/merge-requests/1" in notifier.sent[0].body
    notifier.sent.clear()

    await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)
    assert notifier.sent == []
    await merge_requests.approve_merge_request(ctx.as_actor("U4"), project, 1)
    [approved] = notifier.sent
    assert approved.to == "u2@example.com"
    assert approved.subject == "Merge Request Approved: Hero section"

    await merge_requests.complete_merge(ctx, project, 1)
    assert events.kinds("project:P1") == [
        "merge:created",
        "merge:approved",
        "merge:approved",
        "branch:updated",
        "merge:merged",
    ]
    assert events.events[-1].payload["mergeRequest"]["status"] == "merged"


@pytest.mark.asyncio
async def test_creation_emails_can_be_disabled(
    ctx: CommandContext, project: str, notifier: CapturingNotifier
) -> None:
    await projects.update_project_settings(
        ctx, project,
        ProjectSettingsUpdate(notifications=NotificationSettingsUpdate(on_merge_request=False)),
    )
    await _feature_branch(ctx, project, "U2", "quiet")
    await _open(ctx, project, "U2", "feature/quiet")
    assert notifier.sent == []


# ---------------------------------------------------------------------------
# Review rules
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_creator_cannot_approve_own_request(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "self")
    await _open(ctx, project, "U2", "feature/self")

    with pytest.raises(ForbiddenError):
        await merge_requests.approve_merge_request(ctx.as_actor("U2"), project, 1)
    with pytest.raises(ForbiddenError):
        await merge_requests.request_changes(ctx.as_actor("U2"), project, 1, "mine")
    mr = await merge_requests.get_merge_request(ctx, project, 1)
    assert mr.status is MergeRequestStatus.OPEN


@pytest.mark.asyncio
async def test_creator_cannot_merge_own_request(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U1", "managers-own")
    mr = await _open(ctx, project, "U1", "feature/managers-own")
    for reviewer in mr.reviewers:
        await merge_requests.approve_merge_request(ctx.as_actor(reviewer.user_id), project, 1)
    assert (await merge_requests.get_merge_request(ctx, project, 1)).status is MergeRequestStatus.APPROVED

    with pytest.raises(ForbiddenError):
        await merge_requests.complete_merge(ctx, project, 1)


@pytest.mark.asyncio
async def test_unlisted_designer_cannot_review(ctx: CommandContext, project: str) -> None:
    await _set_protection(ctx, project, min_reviews=1)
    await _feature_branch(ctx, project, "U2", "one-reviewer")
    mr = await _open(ctx, project, "U2", "feature/one-reviewer")
    [reviewer] = mr.reviewers
    outsider = ({"U3", "U4"} - {reviewer.user_id}).pop()

    with pytest.raises(ForbiddenError):
        await merge_requests.approve_merge_request(ctx.as_actor(outsider), project, 1)
    mr = await merge_requests.approve_merge_request(ctx.as_actor(reviewer.user_id), project, 1)
    assert mr.status is MergeRequestStatus.APPROVED


@pytest.mark.asyncio
async def test_manager_is_appended_on_first_review(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "lazy")
    await _open(ctx, project, "U2", "feature/lazy")

    await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)
    mr = await merge_requests.approve_merge_request(ctx, project, 1)

    assert [r.user_id for r in mr.reviewers][-1] == "U1"
    assert len({r.user_id for r in mr.reviewers}) == len(mr.reviewers) == 3
    assert mr.status is MergeRequestStatus.APPROVED

    again = await merge_requests.approve_merge_request(ctx, project, 1)
    assert len(again.reviewers) == 3


@pytest.mark.asyncio
async def test_request_changes_reopens_and_notifies(
    ctx: CommandContext, project: str, notifier: CapturingNotifier, events: CapturingEventSink
) -> None:
    await _feature_branch(ctx, project, "U2", "rework")
    await _open(ctx, project, "U2", "feature/rework")
    await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)
    await merge_requests.approve_merge_request(ctx.as_actor("U4"), project, 1)
    notifier.sent.clear()
    events.clear()

    mr = await merge_requests.request_changes(ctx.as_actor("U3"), project, 1, "Fix the spacing")

    assert mr.status is MergeRequestStatus.OPEN
    entry = next(r for r in mr.reviewers if r.user_id == "U3")
    assert entry.status == "requested_changes"
    assert entry.comment == "Fix the spacing"
    assert mr.approved_count == 1
    [email] = notifier.sent
    assert email.to == "u2@example.com"
    assert "Fix the spacing" in email.body
    assert events.kinds() == ["merge:closed"]

    with pytest.raises(InvalidTransitionError):
        await merge_requests.complete_merge(ctx, project, 1)


@pytest.mark.asyncio
async def test_zero_min_reviews_still_needs_one_approval(ctx: CommandContext, project: str) -> None:
    await _set_protection(ctx, project, min_reviews=0)
    await _feature_branch(ctx, project, "U2", "zero")
    mr = await _open(ctx, project, "U2", "feature/zero")
    assert mr.status is MergeRequestStatus.OPEN
    assert len(mr.reviewers) == 1

    with pytest.raises(ConflictError):
        await merge_requests.complete_merge(ctx, project, 1)


# ---------------------------------------------------------------------------
# Merge rules
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_open_request_cannot_be_merged_when_approval_required(
    ctx: CommandContext, project: str
) -> None:
    await _feature_branch(ctx, project, "U2", "early")
    await _open(ctx, project, "U2", "feature/early")
    with pytest.raises(ConflictError, match="approved before merging"):
        await merge_requests.complete_merge(ctx, project, 1)


@pytest.mark.asyncio
async def test_open_request_merges_when_approval_not_required(
    ctx: CommandContext, project: str
) -> None:
    await _set_protection(ctx, project, require_approval=False)
    await _feature_branch(ctx, project, "U2", "trusted")
    await _open(ctx, project, "U2", "feature/trusted")
    mr = await merge_requests.complete_merge(ctx, project, 1)
    assert mr.status is MergeRequestStatus.MERGED


@pytest.mark.asyncio
async def test_designers_cannot_merge_or_revert(ctx: CommandContext, project: str) -> None:
    await _set_protection(ctx, project, require_approval=False)
    await _feature_branch(ctx, project, "U2", "d")
    await _open(ctx, project, "U2", "feature/d")
    with pytest.raises(ForbiddenError):
        await merge_requests.complete_merge(ctx.as_actor("U3"), project, 1)
    await merge_requests.complete_merge(ctx, project, 1)
    with pytest.raises(ForbiddenError):
        await merge_requests.revert_merge(ctx.as_actor("U3"), project, 1)


@pytest.mark.asyncio
async def test_auto_delete_merged_marks_source(
    ctx: CommandContext, project: str, events: CapturingEventSink
) -> None:
    await _set_protection(ctx, project, require_approval=False, auto_delete_merged=True)
    await _feature_branch(ctx, project, "U2", "done")
    await _open(ctx, project, "U2", "feature/done")
    events.clear()

    await merge_requests.complete_merge(ctx, project, 1)

    source = await repository.get_branch_by_name(ctx.session, project, "feature/done")
    assert source.status == "merged"
    assert events.kinds() == ["branch:updated", "branch:updated", "merge:merged"]
    with pytest.raises(ConflictError):
        await repository.create_commit(
            ctx.as_actor("U2"), project, branch_id=source.branch_id, message="late", snapshot=b"{}"
        )


@pytest.mark.asyncio
async def test_revert_requires_merged_status(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "notyet")
    await _open(ctx, project, "U2", "feature/notyet")
    with pytest.raises(ConflictError):
        await merge_requests.revert_merge(ctx, project, 1)


@pytest.mark.asyncio
async def test_revert_without_pre_merge_tip_not_found(ctx: CommandContext, project: str) -> None:
    await _set_protection(ctx, project, require_approval=False)
    await _feature_branch(ctx, project, "U2", "first")
    await _open(ctx, project, "U2", "feature/first")
    await merge_requests.complete_merge(ctx, project, 1)
    with pytest.raises(NotFoundError):
        await merge_requests.revert_merge(ctx, project, 1)


# ---------------------------------------------------------------------------
# Creation, close, listing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_validation(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "owned")
    with pytest.raises(InvalidInputError):
        await merge_requests.create_merge_request(
            ctx, project, source_branch="main", target_branch="main", title="t"
        )
    with pytest.raises(NotFoundError, match="Source branch"):
        await merge_requests.create_merge_request(
            ctx, project, source_branch="feature/ghost", target_branch="main", title="t"
        )
    with pytest.raises(NotFoundError, match="Both"):
        await merge_requests.create_merge_request(
            ctx, project, source_branch="feature/ghost", target_branch="feature/phantom", title="t"
        )
    with pytest.raises(ForbiddenError):
        await _open(ctx, project, "U3", "feature/owned")


@pytest.mark.asyncio
async def test_numbers_are_sequential_per_project(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "one")
    await _feature_branch(ctx, project, "U2", "two")
    first = await _open(ctx, project, "U2", "feature/one")
    second = await _open(ctx, project, "U2", "feature/two")
    assert (first.merge_request_id, second.merge_request_id) == (1, 2)


@pytest.mark.asyncio
async def test_close_rules(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "closing")
    await _open(ctx, project, "U2", "feature/closing")

    with pytest.raises(ForbiddenError):
        await merge_requests.close_merge_request(ctx.as_actor("U3"), project, 1)
    mr = await merge_requests.close_merge_request(ctx.as_actor("U2"), project, 1)
    assert mr.status is MergeRequestStatus.CLOSED
    assert mr.closed_by == "U2"

    with pytest.raises(ConflictError):
        await merge_requests.close_merge_request(ctx, project, 1)
    with pytest.raises(ConflictError):
        await merge_requests.approve_merge_request(ctx.as_actor("U3"), project, 1)


@pytest.mark.asyncio
async def test_list_filters_by_status(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "x")
    await _feature_branch(ctx, project, "U2", "y")
    await _open(ctx, project, "U2", "feature/x")
    await _open(ctx, project, "U2", "feature/y")
    await merge_requests.close_merge_request(ctx, project, 1)

    assert [m.merge_request_id for m in await merge_requests.list_merge_requests(ctx, project)] == [2, 1]
    assert [m.merge_request_id for m in await merge_requests.list_merge_requests(ctx, project, status="open")] == [2]
    assert len(await merge_requests.list_merge_requests(ctx, project, status="all")) == 2
    with pytest.raises(InvalidInputError):
        await merge_requests.list_merge_requests(ctx, project, status="bogus")


@pytest.mark.asyncio
async def test_unknown_merge_request_not_found(ctx: CommandContext, project: str) -> None:
    with pytest.raises(NotFoundError):
        await merge_requests.get_merge_request(ctx, project, 99)


@pytest.mark.asyncio
async def test_open_request_blocks_source_branch_delete(ctx: CommandContext, project: str) -> None:
    await _feature_branch(ctx, project, "U2", "c")
    await _open(ctx, project, "U2", "feature/c")

    with pytest.raises(ConflictError):
        await repository.delete_branch(ctx, project, "feature/c")
    branch = await repository.get_branch_by_name(ctx.session, project, "feature/c")
    assert branch.status == "active"

    await merge_requests.close_merge_request(ctx, project, 1)
    await repository.delete_branch(ctx, project, "feature/c")
