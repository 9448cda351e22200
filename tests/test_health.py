"""Tests for GET /api/health."""
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["database"] == "ok"
    assert data["language_model"] == "configured"
    assert data["status"] == "healthy"


@pytest.mark.asyncio
async def test_health_degraded_without_language_model(client: AsyncClient, fake_llm):
    fake_llm.configured = False
    resp = await client.get("/api/health/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["language_model"] == "not_configured"
    assert data["status"] == "degraded"


@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    resp = await client.get("/")
    assert resp.status_code == 200
    data = resp.json()
    assert data["name"] == "AI Document Writer API"
    assert data["endpoints"]["documents"] == "/api/user/documents"


@pytest.mark.asyncio
async def test_process_time_header(client: AsyncClient):
    resp = await client.get("/api/templates")
    assert resp.headers["X-Process-Time"].endswith("ms")
