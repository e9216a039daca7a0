"""Tests for health endpoint and error envelope."""

import pytest
from httpx import ASGITransport, AsyncClient

from app.main import app


@pytest.fixture
async def bare_client():
    """Client without dependency overrides (no store initialized)."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


@pytest.mark.asyncio
async def test_health_check(bare_client: AsyncClient):
    """Test health endpoint returns ok."""
    response = await bare_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}


@pytest.mark.asyncio
async def test_store_not_initialized_returns_503(bare_client: AsyncClient):
    """Test routes return 503 before the store is ready."""
    response = await bare_client.get("/v1/places", params={"tab": "all"})
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_unknown_tab_uses_error_envelope(client: AsyncClient):
    """Test invalid input errors use the error envelope."""
    response = await client.get("/v1/places", params={"tab": "popular"})
    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "INVALID_INPUT"
    assert "popular" in error["message"]
    assert "recent" in error["detail"]["allowed"]
