"""Health check endpoints."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends
from sqlalchemy import text

from designhub.config import settings
from designhub.db import AsyncSessionLocal
from designhub.services.object_store import ObjectStoreBackend, get_object_store

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check."""
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": settings.app_version,
    }


@router.get("/health/full")
async def full_health_check(
    store: ObjectStoreBackend = Depends(get_object_store),
) -> dict[str, Any]:
    """
    Health check including dependencies.

    Reports:
    - database: a trivial query succeeds
    - object store: the configured backend
    """
    db_ok = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"⚠️ Database health check failed: {e}")
        db_ok = False

    return {
        "status": "ok" if db_ok else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "dependencies": {
            "database": {"status": "ok" if db_ok else "unavailable"},
            "object_store": {"status": "ok", "backend": store.name},
        },
    }
