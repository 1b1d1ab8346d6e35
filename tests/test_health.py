"""Tests for the health endpoints and response headers."""
from __future__ import annotations

import pytest
from httpx import AsyncClient

from designhub.config import settings


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["service"] == settings.app_name
    assert body["version"] == settings.app_version


@pytest.mark.asyncio
async def test_full_health_reports_dependencies(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/health/full")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["dependencies"]["database"] == {"status": "ok"}
    assert body["dependencies"]["object_store"] == {"status": "ok", "backend": "filesystem"}


@pytest.mark.asyncio
async def test_security_headers(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/health")
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "camera=()" in resp.headers["Permissions-Policy"]
