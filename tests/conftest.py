"""
Pytest configuration and fixtures for StockAPI tests.

Fixtures provide:
- A throwaway SQLite database per test (tables created from the models)
- The application wired to that database, and an in-process HTTP client
- Factories for users, stocks and history bars
"""

import os
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

# Test settings must be in place before any app module reads them
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-do-not-use"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["AUTO_CREATE_TABLES"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("POSTHOG_API_KEY", None)

import httpx
import pytest
import pytest_asyncio

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.api_keys import generate_api_key
from app.core.auth import create_session_token, hash_password
from app.core.database import Database
from app.core.quota import get_plan_quotas
from app.main import create_app
from app.models import Plan, Role, Stock, StockHistory, User, utcnow

DEFAULT_PASSWORD = "secret123"


# =============================================================================
# Database / App Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncGenerator[Database, None]:
    """Fresh file-backed SQLite database with all tables."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'stockapi-test.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def db_session(database):
    """Session on the test database."""
    async with database.session() as session:
        yield session


@pytest.fixture
def app(database):
    """Application bound to the test database."""
    return create_app(database=database)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """In-process HTTP client for the test application."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_user(database):
    """Factory creating a user directly in the database."""
    counter = {"n": 0}

    async def _create(
        email: Optional[str] = None,
        password: str = DEFAULT_PASSWORD,
        role: Role = Role.USER,
        plan: Plan = Plan.FREE,
        with_api_key: bool = True,
        monthly_quota: Optional[int] = None,
        daily_quota: Optional[int] = None,
        daily_calls: int = 0,
        monthly_calls: int = 0,
        last_reset: Optional[datetime] = None,
    ) -> User:
        counter["n"] += 1
        plan_monthly, plan_daily = get_plan_quotas(plan)
        user = User(
            name=f"Test User {counter['n']}",
            email=email or f"user{counter['n']}@example.com",
            password=await hash_password(password),
            role=role,
            plan=plan,
            api_key=generate_api_key() if with_api_key else None,
            monthly_quota=plan_monthly if monthly_quota is None else monthly_quota,
            daily_quota=plan_daily if daily_quota is None else daily_quota,
            daily_calls=daily_calls,
            monthly_calls=monthly_calls,
            last_reset=last_reset or utcnow(),
        )
        async with database.session() as session:
            session.add(user)
            await session.commit()
        return user

    return _create


@pytest.fixture
def make_stock(database):
    """Factory creating a stock (and optional daily bars) in the database."""

    async def _create(
        symbol: str = "BBCA",
        name: str = "Bank Central Asia Tbk",
        price: str = "9875",
        change_percent: str = "1.28",
        volume: int = 45_678_900,
        value: int = 451_234_567_890,
        bars: Optional[list[tuple[date, str, str, str, str, int]]] = None,
        **extra,
    ) -> Stock:
        stock = Stock(
            symbol=symbol,
            name=name,
            price=Decimal(price),
            open=Decimal(price),
            high=Decimal(price),
            low=Decimal(price),
            close=Decimal(price),
            change_percent=Decimal(change_percent),
            volume=volume,
            value=value,
            **extra,
        )
        async with database.session() as session:
            session.add(stock)
            await session.flush()
            for day, o, h, l, c, v in bars or []:
                session.add(StockHistory(
                    stock_id=stock.id,
                    date=day,
                    open=Decimal(o),
                    high=Decimal(h),
                    low=Decimal(l),
                    close=Decimal(c),
                    volume=v,
                ))
            await session.commit()
        return stock

    return _create


@pytest.fixture
def session_headers():
    """Build an Authorization header for a user."""
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_session_token(user.id)}"}
    return _headers


@pytest.fixture
def key_headers():
    """Build an X-API-Key header for a user."""
    def _headers(user: User) -> dict[str, str]:
        return {"X-API-Key": user.api_key}
    return _headers


@pytest.fixture
def daily_bars():
    """Ten weekday bars: 2025-03-03 (Mon) .. 2025-03-14 (Fri)."""
    start = date(2025, 3, 3)
    days = [start + timedelta(days=i) for i in range(12) if (start + timedelta(days=i)).weekday() < 5]
    return [
        (day, str(100 + i), str(110 + i), str(90 + i), str(105 + i), 1_000 * (i + 1))
        for i, day in enumerate(days)
    ]
