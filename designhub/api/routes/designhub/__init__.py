"""DesignHub route package.

Composes sub-routers for projects, branches and snapshots, commits, merge
requests, and team management under the shared ``/designhub`` prefix.
Registered in ``designhub.main`` as:

    app.include_router(designhub.router, prefix="/api/v1")

Every route under this router requires a valid access token; the
``require_valid_token`` dependency is wired at the router level so no
endpoint can be added without authentication.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from designhub.api.routes.designhub import branches, commits, merge_requests, projects, team
from designhub.auth.dependencies import require_valid_token

router = APIRouter(
    prefix="/designhub",
    tags=["designhub"],
    dependencies=[Depends(require_valid_token)],
)

router.include_router(projects.router)
router.include_router(commits.router)
router.include_router(merge_requests.router)
router.include_router(team.router)
# branches.router last: /branches/{branch_name:path} matches any suffix.
router.include_router(branches.router)

__all__ = ["router"]
