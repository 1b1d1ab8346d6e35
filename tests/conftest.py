"""Pytest configuration and fixtures."""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from designhub.api.routes import auth as auth_routes
from designhub.auth.tokens import create_access_token
from designhub.config import settings
from designhub.db import database
from designhub.db import designhub_models as db
from designhub.db.database import Base, get_db, get_session_factory
from designhub.db.models import User
from designhub.main import app
from designhub.services import projects as project_service
from designhub.services.context import CommandContext
from designhub.services.events import CapturingEventSink, get_event_sink, reset_broadcaster
from designhub.services.identity import TrustOnFirstUseVerifier, get_identity_verifier
from designhub.services.notifier import CapturingNotifier, get_notifier
from designhub.services.object_store import FilesystemObjectStore, get_object_store

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789abcdef"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef0123456789abcdef"

PROJECT_ID = "P1"
MANAGER_ID = "U1"
DESIGNER_IDS = ("U2", "U3", "U4")


def pytest_configure(config: pytest.Config) -> None:
    """Ensure asyncio_mode is auto so async fixtures work when pyproject is not in cwd."""
    if hasattr(config.option, "asyncio_mode") and config.option.asyncio_mode is None:
        config.option.asyncio_mode = "auto"
    logging.getLogger("httpcore").setLevel(logging.CRITICAL)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


@pytest.fixture(autouse=True)
def _token_secrets(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "access_token_secret", ACCESS_SECRET)
    monkeypatch.setattr(settings, "refresh_token_secret", REFRESH_SECRET)


@pytest.fixture(autouse=True)
def _reset_singletons() -> Iterator[None]:
    """Reset process-wide state between tests to prevent cross-test pollution."""
    yield
    reset_broadcaster()
    auth_routes.limiter.reset()
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    """In-memory SQLite engine with every table created."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(tmp_path: Path) -> FilesystemObjectStore:
    return FilesystemObjectStore(
        tmp_path / "store",
        max_bytes=settings.max_snapshot_bytes,
        timeout_seconds=5.0,
    )


@pytest.fixture
def events() -> CapturingEventSink:
    return CapturingEventSink()


@pytest.fixture
def notifier() -> CapturingNotifier:
    return CapturingNotifier()


@pytest.fixture
def ctx(
    db_session: AsyncSession,
    store: FilesystemObjectStore,
    events: CapturingEventSink,
    notifier: CapturingNotifier,
) -> CommandContext:
    """Command context acting as the project manager; use ``ctx.as_actor`` for others."""
    return CommandContext(
        session=db_session,
        store=store,
        events=events,
        notifier=notifier,
        actor_id=MANAGER_ID,
    )


@pytest_asyncio.fixture
async def users(db_session: AsyncSession) -> list[User]:
    """U1..U4 registered accounts."""
    rows = [
        User(user_id=user_id, email=f"{user_id.lower()}@example.com", name=f"User {user_id}")
        for user_id in (MANAGER_ID, *DESIGNER_IDS)
    ]
    db_session.add_all(rows)
    await db_session.commit()
    return rows


@pytest_asyncio.fixture
async def project(
    ctx: CommandContext,
    users: list[User],
    events: CapturingEventSink,
    notifier: CapturingNotifier,
) -> str:
    """Project P1 managed by U1 with U2, U3 and U4 as active designers."""
    await project_service.create_project(ctx, project_id=PROJECT_ID, name="Demo")
    for user in users[1:]:
        ctx.session.add(
            db.DesignTeamMember(
                project_id=PROJECT_ID,
                user_id=user.user_id,
                email=user.email,
                role="designer",
                status="active",
                invited_by=MANAGER_ID,
            )
        )
    await ctx.session.commit()
    events.clear()
    notifier.sent.clear()
    return PROJECT_ID


# -----------------------------------------------------------------------------
# HTTP fixtures
# -----------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    engine: AsyncEngine,
    session_factory: async_sessionmaker[AsyncSession],
    db_session: AsyncSession,
    store: FilesystemObjectStore,
    events: CapturingEventSink,
    notifier: CapturingNotifier,
) -> AsyncIterator[AsyncClient]:
    """Async test client wired to the test database, store, sink and notifier."""
    old_engine = database._engine
    old_factory = database._async_session_factory
    database._engine = engine
    database._async_session_factory = session_factory

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_object_store] = lambda: store
    app.dependency_overrides[get_event_sink] = lambda: events
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_identity_verifier] = TrustOnFirstUseVerifier
    try:
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        database._engine = old_engine
        database._async_session_factory = old_factory


@pytest.fixture
def headers_for() -> Callable[[str], dict[str, str]]:
    """Build Bearer headers for any user id."""

    def _headers(user_id: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {create_access_token(user_id)}",
            "Content-Type": "application/json",
        }

    return _headers


@pytest.fixture
def auth_headers(headers_for: Callable[[str], dict[str, str]]) -> dict[str, str]:
    """Headers for the project manager U1."""
    return headers_for(MANAGER_ID)
