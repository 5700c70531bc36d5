"""
API tests for quota enforcement on API-key routes.

A counting route guarded like the data routes counts how often its handler
actually runs, so rejected calls can be shown never to reach it.
"""

from datetime import timedelta

import httpx
import pytest
from fastapi import Depends
from sqlalchemy import select

from app.core.auth import require_api_quota
from app.models import ApiUsage, Plan, User, utcnow


@pytest.fixture
def counted_route(app):
    """Register /counted behind require_api_quota and count handler runs."""
    calls = {"count": 0}

    async def handler():
        calls["count"] += 1
        return {"success": True}

    app.add_api_route("/counted", handler, dependencies=[Depends(require_api_quota)])
    return calls


class TestQuotaEnforcement:
    """Quota checks run before the handler and only admitted calls count."""

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_rejected_call_never_reaches_handler(
        self, client, make_user, key_headers, counted_route, database
    ):
        user = await make_user(daily_quota=2)

        first = await client.get("/counted", headers=key_headers(user))
        second = await client.get("/counted", headers=key_headers(user))
        third = await client.get("/counted", headers=key_headers(user))

        assert (first.status_code, second.status_code) == (200, 200)
        assert second.headers["X-Quota-Remaining-Day"] == "0"
        assert third.status_code == 429
        assert third.json()["error"] == {
            "code": "QUOTA_EXCEEDED",
            "message": "Kuota harian paket FREE sudah habis",
        }
        assert int(third.headers["Retry-After"]) > 0
        assert counted_route["count"] == 2

        async with database.session() as session:
            stored = await session.get(User, user.id)
            statuses = (await session.execute(
                select(ApiUsage.status_code).order_by(ApiUsage.timestamp)
            )).scalars().all()
        assert (stored.daily_calls, stored.api_calls) == (2, 2)
        # Rejections are still audited
        assert sorted(statuses) == [200, 200, 429]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_monthly_ceiling(self, client, make_user, key_headers, counted_route):
        user = await make_user(plan=Plan.STARTER, monthly_calls=50_000)
        response = await client.get("/counted", headers=key_headers(user))
        assert response.status_code == 429
        assert response.json()["error"]["message"] == "Kuota bulanan paket STARTER sudah habis"
        assert counted_route["count"] == 0

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_stale_counters_roll_over(self, client, make_user, key_headers, counted_route):
        """Yesterday's exhausted daily quota does not block today."""
        user = await make_user(daily_calls=100, last_reset=utcnow() - timedelta(days=2))
        response = await client.get("/counted", headers=key_headers(user))
        assert response.status_code == 200
        assert response.headers["X-Quota-Remaining-Day"] == "99"
        assert counted_route["count"] == 1

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_bad_key_does_not_reach_handler(self, client, counted_route):
        response = await client.get("/counted", headers={"X-API-Key": "sk_live_" + "f" * 64})
        assert response.status_code == 401
        assert counted_route["count"] == 0

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_failed_handler_keeps_count_and_is_audited(
        self, app, make_user, key_headers, database
    ):
        """A call that crashes still counts and leaves a 500 usage row."""
        async def crash():
            raise RuntimeError("boom")

        app.add_api_route("/crash", crash, dependencies=[Depends(require_api_quota)])
        user = await make_user()

        transport = httpx.ASGITransport(app=app, raise_app_exceptions=False)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            response = await c.get("/crash", headers=key_headers(user))

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "SERVER_ERROR"

        async with database.session() as session:
            stored = await session.get(User, user.id)
            rows = (await session.execute(select(ApiUsage))).scalars().all()
        assert (stored.api_calls, stored.daily_calls) == (1, 1)
        assert [(r.endpoint, r.status_code) for r in rows] == [("/crash", 500)]
