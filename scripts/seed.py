#!/usr/bin/env python3
"""
Seed the database with demo accounts, IDX blue chips and recent history.

Safe to re-run: users are matched by email and left alone, stocks are
matched by symbol and refreshed, and history bars that already exist for a
(stock, date) pair are skipped.

Usage:
    # Seed everything (creates tables first)
    python scripts/seed.py

    # More history, reproducible prices
    python scripts/seed.py --days 30 --random-seed 42

    # Accounts and stocks only
    python scripts/seed.py --skip-history
"""

import sys, os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from dotenv import load_dotenv
load_dotenv()

import argparse
import asyncio
import random
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.api_keys import issue_unique_api_key
from app.core.auth import hash_password
from app.core.database import Database
from app.core.quota import get_plan_quotas
from app.models import Plan, Role, Stock, StockHistory, User

# (name, email, password, role, plan, with_api_key)
DEMO_USERS = [
    ("Admin User", "admin@stockapi.com", "admin123", Role.ADMIN, Plan.ENTERPRISE, False),
    ("John Doe", "john@example.com", "user123", Role.USER, Plan.FREE, True),
    ("Jane Smith", "jane@example.com", "user123", Role.USER, Plan.STARTER, True),
]

STOCKS = [
    {
        "symbol": "BBCA", "name": "Bank Central Asia Tbk",
        "sector": "Banking", "subsector": "Bank",
        "price": 9875, "open": 9800, "high": 9900, "low": 9750, "close": 9875,
        "change": 125, "change_percent": "1.28",
        "volume": 45_678_900, "value": 451_234_567_890,
        "market_cap": 1_234_567_890_000, "shares": 125_000_000_000,
    },
    {
        "symbol": "BBRI", "name": "Bank Rakyat Indonesia Tbk",
        "sector": "Banking", "subsector": "Bank",
        "price": 5250, "open": 5300, "high": 5350, "low": 5200, "close": 5250,
        "change": -50, "change_percent": "-0.94",
        "volume": 89_234_500, "value": 468_481_125_000,
        "market_cap": 987_654_321_000, "shares": 188_000_000_000,
    },
    {
        "symbol": "BMRI", "name": "Bank Mandiri Tbk",
        "sector": "Banking", "subsector": "Bank",
        "price": 6500, "open": 6475, "high": 6550, "low": 6450, "close": 6500,
        "change": 25, "change_percent": "0.39",
        "volume": 67_890_123, "value": 441_285_799_500,
        "market_cap": 1_567_890_123_000, "shares": 241_000_000_000,
    },
    {
        "symbol": "TLKM", "name": "Telkom Indonesia Tbk",
        "sector": "Telecommunication", "subsector": "Telecommunication",
        "price": 3850, "open": 3800, "high": 3900, "low": 3775, "close": 3850,
        "change": 75, "change_percent": "1.99",
        "volume": 123_456_789, "value": 475_308_637_150,
        "market_cap": 385_000_000_000, "shares": 100_000_000_000,
    },
    {
        "symbol": "ASII", "name": "Astra International Tbk",
        "sector": "Automotive", "subsector": "Automotive",
        "price": 5100, "open": 5050, "high": 5150, "low": 5000, "close": 5100,
        "change": 50, "change_percent": "0.99",
        "volume": 34_567_890, "value": 176_296_239_000,
        "market_cap": 204_000_000_000, "shares": 40_000_000_000,
    },
    {
        "symbol": "UNVR", "name": "Unilever Indonesia Tbk",
        "sector": "Consumer Goods", "subsector": "Consumer Goods",
        "price": 2650, "open": 2625, "high": 2675, "low": 2610, "close": 2650,
        "change": 25, "change_percent": "0.95",
        "volume": 12_345_678, "value": 32_715_546_700,
        "market_cap": 198_750_000_000, "shares": 75_000_000_000,
    },
    {
        "symbol": "GOTO", "name": "GoTo Gojek Tokopedia Tbk",
        "sector": "Technology", "subsector": "E-commerce",
        "price": 125, "open": 100, "high": 135, "low": 98, "close": 125,
        "change": 25, "change_percent": "25.00",
        "volume": 987_654_321, "value": 123_456_790_125,
        "market_cap": 25_000_000_000, "shares": 200_000_000_000,
    },
    {
        "symbol": "INDF", "name": "Indofood Sukses Makmur Tbk",
        "sector": "Consumer Goods", "subsector": "Food & Beverages",
        "price": 6775, "open": 6750, "high": 6800, "low": 6725, "close": 6775,
        "change": 25, "change_percent": "0.37",
        "volume": 23_456_789, "value": 158_934_644_775,
        "market_cap": 59_581_250_000, "shares": 8_793_850_000,
    },
]

DECIMAL_FIELDS = ("price", "open", "high", "low", "close", "change", "change_percent")
CENTS = Decimal("0.01")


async def seed_users(session: AsyncSession) -> None:
    for name, email, password, role, plan, with_api_key in DEMO_USERS:
        existing = await session.execute(select(User).where(User.email == email))
        user = existing.scalar_one_or_none()
        if user:
            print(f"  = {email} (exists)")
            continue

        monthly_quota, daily_quota = get_plan_quotas(plan)
        user = User(
            name=name,
            email=email,
            password=await hash_password(password),
            role=role,
            plan=plan,
            api_key=await issue_unique_api_key(session) if with_api_key else None,
            monthly_quota=monthly_quota,
            daily_quota=daily_quota,
        )
        session.add(user)
        await session.commit()
        print(f"  + {email} [{role.value}/{plan.value}] API key: {user.api_key or '-'}")


async def seed_stocks(session: AsyncSession) -> list[Stock]:
    stocks = []
    for data in STOCKS:
        fields = {
            k: Decimal(str(v)) if k in DECIMAL_FIELDS else v
            for k, v in data.items()
        }
        existing = await session.execute(select(Stock).where(Stock.symbol == data["symbol"]))
        stock = existing.scalar_one_or_none()
        if stock:
            for field, value in fields.items():
                setattr(stock, field, value)
            print(f"  ~ {stock.symbol} (refreshed)")
        else:
            stock = Stock(**fields)
            session.add(stock)
            print(f"  + {data['symbol']} - {data['name']}")
        stocks.append(stock)
    await session.commit()
    return stocks


def make_bar(stock: Stock, day: date, rng: random.Random) -> StockHistory:
    """Random bar within +/-5% of the current price."""
    price = float(stock.price)
    day_open = price * (1 + rng.uniform(-0.05, 0.05))
    day_high = day_open * (1 + rng.uniform(0, 0.03))
    day_low = day_open * (1 - rng.uniform(0, 0.03))
    day_close = day_low + rng.random() * (day_high - day_low)
    return StockHistory(
        stock_id=stock.id,
        date=day,
        open=Decimal(str(day_open)).quantize(CENTS),
        high=Decimal(str(day_high)).quantize(CENTS),
        low=Decimal(str(day_low)).quantize(CENTS),
        close=Decimal(str(day_close)).quantize(CENTS),
        volume=int(stock.volume * rng.uniform(0.7, 1.3)),
    )


async def seed_history(
    session: AsyncSession,
    stocks: list[Stock],
    days: int,
    rng: random.Random,
) -> None:
    today = date.today()
    dates = [today - timedelta(days=i) for i in range(days - 1, -1, -1)]
    for stock in stocks:
        existing = await session.execute(
            select(StockHistory.date).where(
                StockHistory.stock_id == stock.id,
                StockHistory.date >= dates[0],
            )
        )
        have = set(existing.scalars().all())
        added = 0
        for day in dates:
            if day in have:
                continue
            session.add(make_bar(stock, day, rng))
            added += 1
        await session.commit()
        print(f"  {stock.symbol}: {added} bars added, {len(have)} already present")


async def main():
    parser = argparse.ArgumentParser(description="Seed StockAPI demo data")
    parser.add_argument("--days", type=int, default=8, help="Days of history per stock")
    parser.add_argument("--skip-history", action="store_true", help="Do not add history bars")
    parser.add_argument("--random-seed", type=int, help="Seed for reproducible prices")
    args = parser.parse_args()

    database = Database.from_settings()
    try:
        await database.create_all()
        async with database.session() as session:
            print("Users:")
            await seed_users(session)
            print("Stocks:")
            stocks = await seed_stocks(session)
            if not args.skip_history and args.days > 0:
                print("History:")
                await seed_history(session, stocks, args.days, random.Random(args.random_seed))
        print("Seed completed.")
    finally:
        await database.dispose()


if __name__ == "__main__":
    asyncio.run(main())
