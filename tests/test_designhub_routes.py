"""HTTP tests for the DesignHub API.

Covers:
- authentication is required on every /designhub route (401 envelope)
- the branch → commit → merge request → merge → revert workflow end to end
- checkout, snapshot save/read, branch lookup by a name containing "/"
- error envelopes: 400 validation, 403 forbidden, 404 not found, 409 conflict, 410 expired
- team invitations over HTTP
- realtime events emitted by HTTP commands
"""
from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from designhub.auth.tokens import create_refresh_token
from designhub.db import designhub_models as db
from designhub.db.models import User
from designhub.services.events import CapturingEventSink
from designhub.services.notifier import CapturingNotifier
from designhub.services.object_store import FilesystemObjectStore

API = "/api/v1/designhub"
PROJECT = f"{API}/projects/P1"

Headers = Callable[[str], dict[str, str]]


def snapshot_with(elements: int) -> dict[str, Any]:
    return {
        "version": "1.0",
        "pages": [{"artboards": [{"elements": [{"id": f"el-{i}"} for i in range(elements)]}]}],
    }


async def _branch_id(client: AsyncClient, headers: dict[str, str], name: str) -> str:
    resp = await client.get(f"{PROJECT}/branches", headers=headers)
    assert resp.status_code == 200
    return next(b["branchId"] for b in resp.json()["branches"] if b["name"] == name)


async def _commit(
    client: AsyncClient, headers: dict[str, str], branch_id: str, message: str, elements: int
) -> dict[str, Any]:
    resp = await client.post(
        f"{PROJECT}/commits",
        headers=headers,
        json={"branchId": branch_id, "message": message, "snapshot": snapshot_with(elements)},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_routes_require_token(client: AsyncClient) -> None:
    resp = await client.get(f"{API}/projects")
    assert resp.status_code == 401
    assert resp.json() == {"error": {"code": "UNAUTHORIZED", "message": "Access token required"}}


@pytest.mark.asyncio
async def test_refresh_token_is_not_accepted_as_access(
    client: AsyncClient, project: str
) -> None:
    resp = await client.get(
        f"{API}/projects", headers={"Authorization": f"Bearer {create_refresh_token('U1')}"}
    )
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "UNAUTHORIZED"


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_branch_merge_and_revert_workflow(
    client: AsyncClient,
    project: str,
    headers_for: Headers,
    events: CapturingEventSink,
) -> None:
    u1, u2 = headers_for("U1"), headers_for("U2")
    main_id = await _branch_id(client, u1, "main")
    await _commit(client, u1, main_id, "baseline", 1)

    resp = await client.post(f"{PROJECT}/branches", headers=u2, json={"name": "b"})
    assert resp.status_code == 201, resp.text
    branch = resp.json()
    assert branch["name"] == "feature/b"
    assert branch["baseBranch"] == "main"
    assert branch["lastCommit"]["message"] == "Initial commit from base branch"

    commit = await _commit(client, u2, branch["branchId"], "three elements", 3)
    assert commit["changes"]["componentsUpdated"] == 3
    assert commit["snapshot"]["fileUrl"].endswith(f"/commits/{commit['hash']}.json")

    resp = await client.post(
        f"{PROJECT}/merge-requests",
        headers=u2,
        json={"sourceBranch": "feature/b", "targetBranch": "main", "title": "Hero"},
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["mergeRequestId"] == 1
    assert resp.json()["status"] == "open"

    for reviewer in ("U3", "U4"):
        resp = await client.post(f"{PROJECT}/merge-requests/1/approve", headers=headers_for(reviewer))
        assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "approved"
    assert resp.json()["approvedCount"] == 2

    resp = await client.post(f"{PROJECT}/merge-requests/1/merge", headers=u1)
    assert resp.status_code == 200, resp.text
    merged = resp.json()
    assert merged["status"] == "merged"
    assert merged["stats"]["componentsUpdated"] == 3

    resp = await client.post(
        f"{PROJECT}/checkout", headers=u1, json={"targetBranchId": main_id}
    )
    assert resp.status_code == 200
    assert resp.json()["hasSnapshot"] is True
    assert resp.json()["snapshot"] == snapshot_with(3)

    resp = await client.post(f"{PROJECT}/merge-requests/1/revert", headers=u1)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "reverted"

    resp = await client.get(f"{PROJECT}/branches/{main_id}/snapshot", headers=u1)
    assert resp.json()["snapshot"] == snapshot_with(1)

    resp = await client.get(f"{PROJECT}/history", headers=u1, params={"branchName": "main"})
    messages = [c["message"] for c in resp.json()["commits"]]
    assert messages == ["Reverted merge #1: Hero", "Merge feature/b into main", "baseline"]

    assert "merge:merged" in events.kinds("project:P1")
    assert events.kinds("project:P1")[-1] == "merge:closed"


@pytest.mark.asyncio
async def test_snapshot_save_checkout_and_branch_lookup(
    client: AsyncClient, project: str, headers_for: Headers
) -> None:
    u2 = headers_for("U2")
    resp = await client.post(
        f"{PROJECT}/branches", headers=u2, json={"name": "header", "type": "design"}
    )
    branch_id = resp.json()["branchId"]

    resp = await client.post(
        f"{PROJECT}/branches/{branch_id}/snapshot", headers=u2, json={"snapshot": snapshot_with(2)}
    )
    assert resp.status_code == 200
    assert resp.json()["hasSnapshot"] is True

    main_id = await _branch_id(client, u2, "main")
    resp = await client.post(
        f"{PROJECT}/checkout",
        headers=headers_for("U3"),
        json={
            "sourceBranchId": branch_id,
            "targetBranchId": main_id,
            "currentSnapshot": snapshot_with(9),
        },
    )
    assert resp.status_code == 200
    assert resp.json()["sourceSaved"] is False
    assert resp.json()["hasSnapshot"] is False
    assert resp.json()["snapshot"] is None

    resp = await client.get(f"{PROJECT}/branches/design/header", headers=u2)
    assert resp.status_code == 200
    assert resp.json()["branchId"] == branch_id
    assert resp.json()["recentCommits"] == []

    resp = await client.get(f"{PROJECT}/branches/{branch_id}/snapshot", headers=u2)
    assert resp.json()["snapshot"] == snapshot_with(2)


@pytest.mark.asyncio
async def test_revert_to_commit_route(client: AsyncClient, project: str, auth_headers: dict[str, str]) -> None:
    main_id = await _branch_id(client, auth_headers, "main")
    first = await _commit(client, auth_headers, main_id, "first", 1)
    await _commit(client, auth_headers, main_id, "second", 2)

    resp = await client.post(
        f"{PROJECT}/branches/{main_id}/revert/{first['hash']}", headers=auth_headers
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["revertedTo"]["hash"] == first["hash"]
    assert body["commit"]["message"].startswith("Reverted to commit ")


@pytest.mark.asyncio
async def test_delete_branch_route(client: AsyncClient, project: str, headers_for: Headers) -> None:
    u1 = headers_for("U1")
    await client.post(f"{PROJECT}/branches", headers=u1, json={"name": "old"})

    assert (await client.delete(f"{PROJECT}/branches/feature/old", headers=headers_for("U2"))).status_code == 403
    assert (await client.delete(f"{PROJECT}/branches/feature/old", headers=u1)).status_code == 204
    assert (await client.get(f"{PROJECT}/branches/feature/old", headers=u1)).status_code == 404

    resp = await client.delete(f"{PROJECT}/branches/main", headers=u1)
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "FORBIDDEN"


# ---------------------------------------------------------------------------
# Error envelopes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_branch_names_cannot_shadow_id_routes(
    client: AsyncClient, project: str, auth_headers: dict[str, str]
) -> None:
    for name in ("snapshot", "revert", "hero/snapshot"):
        resp = await client.post(
            f"{PROJECT}/branches", headers=auth_headers, json={"name": name, "type": "feature"}
        )
        assert resp.status_code == 400, name
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
        assert "reserved" in resp.json()["error"]["message"]

    resp = await client.post(
        f"{PROJECT}/branches", headers=auth_headers, json={"name": "snapshots", "type": "feature"}
    )
    assert resp.status_code == 201
    resp = await client.get(f"{PROJECT}/branches/feature/snapshots", headers=auth_headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "feature/snapshots"


@pytest.mark.asyncio
async def test_validation_errors_are_400(client: AsyncClient, project: str, auth_headers: dict[str, str]) -> None:
    resp = await client.post(f"{PROJECT}/branches", headers=auth_headers, json={"name": "has space"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
    assert "name" in resp.json()["error"]["message"]

    resp = await client.get(f"{PROJECT}/history", headers=auth_headers, params={"limit": 0})
    assert resp.status_code == 400

    resp = await client.get(f"{PROJECT}/merge-requests", headers=auth_headers, params={"status": "bogus"})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_oversized_snapshot_is_400(
    client: AsyncClient,
    project: str,
    auth_headers: dict[str, str],
    store: FilesystemObjectStore,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    main_id = await _branch_id(client, auth_headers, "main")
    monkeypatch.setattr(store, "max_bytes", 32)
    resp = await client.post(
        f"{PROJECT}/commits",
        headers=auth_headers,
        json={"branchId": main_id, "message": "big", "snapshot": snapshot_with(10)},
    )
    assert resp.status_code == 400
    assert "limit" in resp.json()["error"]["message"]


@pytest.mark.asyncio
async def test_not_found_and_forbidden(client: AsyncClient, project: str, headers_for: Headers) -> None:
    resp = await client.get(f"{API}/projects/nope", headers=headers_for("U1"))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "NOT_FOUND"

    resp = await client.get(PROJECT, headers=headers_for("outsider"))
    assert resp.status_code == 403
    assert resp.json()["error"] == {
        "code": "FORBIDDEN",
        "message": "You do not have access to this project",
    }

    resp = await client.get(f"{PROJECT}/merge-requests/42", headers=headers_for("U1"))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_conflicts_are_409(client: AsyncClient, project: str, headers_for: Headers) -> None:
    u1 = headers_for("U1")
    resp = await client.post(f"{API}/projects", headers=u1, json={"projectId": "P1", "name": "Again"})
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"

    await client.post(f"{PROJECT}/branches", headers=u1, json={"name": "twice"})
    resp = await client.post(f"{PROJECT}/branches", headers=u1, json={"name": "twice"})
    assert resp.status_code == 409

    await client.post(f"{PROJECT}/branches", headers=headers_for("U2"), json={"name": "wip"})
    await client.post(
        f"{PROJECT}/merge-requests",
        headers=headers_for("U2"),
        json={"sourceBranch": "feature/wip", "targetBranch": "main", "title": "WIP"},
    )
    resp = await client.post(f"{PROJECT}/merge-requests/1/merge", headers=u1)
    assert resp.status_code == 409
    assert resp.json()["error"]["message"] == "Merge request must be approved before merging"


# ---------------------------------------------------------------------------
# Projects and team
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_and_list_projects(client: AsyncClient, users: list[User], headers_for: Headers) -> None:
    resp = await client.post(
        f"{API}/projects",
        headers=headers_for("U2"),
        json={"projectId": "doc-42", "name": "Checkout flow"},
    )
    assert resp.status_code == 201
    assert resp.json()["role"] == "manager"
    assert resp.json()["settings"]["branchProtection"]["minReviews"] == 2

    resp = await client.get(f"{API}/projects", headers=headers_for("U2"))
    assert [p["projectId"] for p in resp.json()["projects"]] == ["doc-42"]

    resp = await client.patch(
        f"{API}/projects/doc-42/settings",
        headers=headers_for("U2"),
        json={"branchProtection": {"minReviews": 1}},
    )
    assert resp.status_code == 200
    assert resp.json()["settings"]["branchProtection"]["minReviews"] == 1
    assert resp.json()["settings"]["branchProtection"]["requireApproval"] is True


@pytest.mark.asyncio
async def test_invitation_flow(
    client: AsyncClient,
    project: str,
    headers_for: Headers,
    notifier: CapturingNotifier,
    db_session: AsyncSession,
) -> None:
    resp = await client.post(
        f"{PROJECT}/team/invite",
        headers=headers_for("U1"),
        json={"email": "guest@example.com", "role": "designer"},
    )
    assert resp.status_code == 201, resp.text
    token = resp.json()["invitationToken"]
    assert resp.json()["member"]["status"] == "pending"
    assert notifier.sent[-1].to == "guest@example.com"

    resp = await client.post(
        f"{API}/invitations/accept", headers=headers_for("guest-1"), json={"token": token}
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["userId"] == "guest-1"
    assert resp.json()["status"] == "active"

    resp = await client.get(f"{PROJECT}/team", headers=headers_for("guest-1"))
    assert resp.status_code == 200
    assert len(resp.json()["members"]) == 5

    resp = await client.post(
        f"{API}/invitations/accept", headers=headers_for("guest-1"), json={"token": token}
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_expired_invitation_is_410(
    client: AsyncClient, project: str, headers_for: Headers, db_session: AsyncSession
) -> None:
    resp = await client.post(
        f"{PROJECT}/team/invite", headers=headers_for("U1"), json={"email": "late@example.com"}
    )
    token = resp.json()["invitationToken"]
    stmt = select(db.DesignTeamMember).where(db.DesignTeamMember.invitation_token == token)
    member = (await db_session.execute(stmt)).scalar_one()
    member.invited_at = datetime.now(timezone.utc) - timedelta(days=30)
    await db_session.commit()

    resp = await client.post(
        f"{API}/invitations/accept", headers=headers_for("late-1"), json={"token": token}
    )
    assert resp.status_code == 410
    assert resp.json()["error"]["code"] == "EXPIRED"


@pytest.mark.asyncio
async def test_team_role_and_removal_routes(client: AsyncClient, project: str, headers_for: Headers) -> None:
    u1 = headers_for("U1")
    resp = await client.put(f"{PROJECT}/team/U2/role", headers=u1, json={"role": "manager"})
    assert resp.status_code == 200
    assert resp.json()["role"] == "manager"

    resp = await client.put(f"{PROJECT}/team/U3/role", headers=u1, json={"role": "owner-ish"})
    assert resp.status_code == 400

    assert (await client.delete(f"{PROJECT}/team/U4", headers=u1)).status_code == 204
    assert (await client.get(PROJECT, headers=headers_for("U4"))).status_code == 403

    resp = await client.post(f"{PROJECT}/team/designers", headers=u1, json={"name": "Robin"})
    assert resp.status_code == 201
    assert resp.json()["status"] == "active"
