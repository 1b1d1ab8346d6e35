"""
SQLAlchemy ORM models for DesignHub accounts.

Tables:
- designhub_users: User accounts (real logins and invitation placeholders)
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import JSON

from designhub.db.database import Base

# Prefix of user ids minted for invited people who have not logged in yet.
PLACEHOLDER_USER_PREFIX = "temp_"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def default_preferences() -> dict[str, Any]:
    return {"emailNotifications": True}


class User(Base):
    """
    User account.

    ``user_id`` is the identity supplied by the editor's sign-in provider and is
    what every other table references.  Invitations to unknown email addresses
    create a placeholder row whose ``user_id`` starts with ``temp_``; the first
    login with that email claims the placeholder (see ``designhub.services.auth``).
    """
    __tablename__ = "designhub_users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    # Stored lowercase; uniqueness is enforced on the normalized value.
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    avatar_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    preferences: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=default_preferences
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @property
    def is_placeholder(self) -> bool:
        return self.user_id.startswith(PLACEHOLDER_USER_PREFIX)

    def __repr__(self) -> str:
        return f"<User {self.user_id} ({self.email})>"
