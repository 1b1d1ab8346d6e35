"""
Database module for DesignHub.

Provides async SQLAlchemy support with PostgreSQL and SQLite.
"""
from __future__ import annotations

from designhub.db.database import (
    get_db,
    init_db,
    close_db,
    AsyncSessionLocal,
)
from designhub.db.models import User
from designhub.db import designhub_models as designhub_models  # noqa: F401 (register with Base)

__all__ = [
    "get_db",
    "init_db",
    "close_db",
    "AsyncSessionLocal",
    "User",
]
