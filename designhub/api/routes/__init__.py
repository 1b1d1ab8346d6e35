"""API route modules."""
from __future__ import annotations

from designhub.api.routes import auth, designhub, events, health

__all__ = ["auth", "designhub", "events", "health"]
