"""
Health endpoint tests using pytest-asyncio and httpx.AsyncClient.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from quotedesk.main import app


@pytest.mark.asyncio
async def test_health_endpoint():
    """Test the health check endpoint returns expected structure."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health")

    assert response.status_code == 200
    data = response.json()

    assert "status" in data
    assert "uptime" in data
    assert "checks" in data
    assert isinstance(data["checks"], dict)
    assert "database" in data["checks"]

    # Tables are not provisioned in the default database, so probes report them
    assert data["status"] in ["ok", "degraded"]


@pytest.mark.asyncio
async def test_root_health_matches_versioned_route():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert set(response.json()) == {"status", "uptime", "checks"}
