"""
API tests for the service banner, health check and global error handling.
"""

import httpx
import pytest


class TestSystemEndpoints:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_root_banner(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["endpoints"]["stocks"] == "/api/v1/stocks"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_health(self, client):
        """Database reachable and Redis not configured."""
        response = await client.get("/health")
        data = response.json()["data"]
        assert data["status"] == "healthy"
        assert data["checks"] == {"database": "healthy", "cache": "not configured"}

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_request_id_echoed(self, client):
        response = await client.get("/", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_method_not_allowed(self, client):
        response = await client.delete("/health")
        assert response.status_code == 405
        assert response.json()["success"] is False

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_unhandled_error_is_generic(self, app):
        """Unexpected exceptions become SERVER_ERROR without internals."""
        async def explode():
            raise RuntimeError("database password is hunter2")

        app.add_api_route("/explode", explode)
        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            response = await c.get("/explode")

        assert response.status_code == 500
        assert response.json() == {
            "success": False,
            "error": {"code": "SERVER_ERROR", "message": "Terjadi kesalahan server"},
        }
