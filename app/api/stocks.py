"""
Stock data endpoints for StockAPI.

Every route here requires an X-API-Key and consumes one call of the
caller's quota before the handler runs.

Endpoints:
- GET /api/v1/stocks - Paginated stock list
- GET /api/v1/stocks/search - Search by symbol or name
- GET /api/v1/stocks/{symbol} - Full snapshot for one stock
- GET /api/v1/stocks/{symbol}/history - OHLCV bars (daily, weekly, monthly)
- GET /api/v1/market/summary - Market breadth and totals
"""

from datetime import date
from itertools import groupby
from typing import Literal, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.helpers import (
    bar_to_dict,
    get_stock_or_404,
    page_meta,
    stock_summary,
    stock_to_dict,
)
from app.core.auth import require_api_quota
from app.core.database import get_db
from app.core.errors import bad_request
from app.core.serialization import envelope
from app.models import Stock, StockHistory

logger = structlog.get_logger()

router = APIRouter(
    prefix="/api/v1",
    tags=["Stocks"],
    dependencies=[Depends(require_api_quota)],
)

MAX_PAGE_SIZE = 100
MAX_SEARCH_RESULTS = 50

# Public sort keys -> columns
SORT_FIELDS = {
    "symbol": Stock.symbol,
    "name": Stock.name,
    "price": Stock.price,
    "change": Stock.change,
    "changePercent": Stock.change_percent,
    "volume": Stock.volume,
    "marketCap": Stock.market_cap,
    "lastUpdate": Stock.last_update,
}


# =============================================================================
# LIST / SEARCH / DETAIL
# =============================================================================


@router.get("/stocks")
async def list_stocks(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(50, ge=1, description="Results per page (max 100)"),
    sort: str = Query("symbol", description=f"Sort field: {', '.join(SORT_FIELDS)}"),
    order: Literal["asc", "desc"] = Query("asc", description="Sort direction"),
    db: AsyncSession = Depends(get_db),
):
    """List stocks with pagination."""
    column = SORT_FIELDS.get(sort)
    if column is None:
        raise bad_request(
            "INVALID_QUERY",
            f"Field sort tidak valid. Pilihan: {', '.join(SORT_FIELDS)}",
        )
    per_page = min(limit, MAX_PAGE_SIZE)
    ordering = column.desc() if order == "desc" else column.asc()

    total = (await db.execute(select(func.count(Stock.id)))).scalar_one()
    result = await db.execute(
        select(Stock)
        .order_by(ordering, Stock.symbol)
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    stocks = result.scalars().all()

    return envelope(
        data=[stock_summary(s) for s in stocks],
        meta=page_meta(total, page, per_page),
    )


@router.get("/stocks/search")
async def search_stocks(
    q: Optional[str] = Query(None, description="Symbol or name fragment (min 2 chars)"),
    limit: int = Query(10, ge=1, description="Max results (max 50)"),
    db: AsyncSession = Depends(get_db),
):
    """Case-insensitive search over symbol and name."""
    if q is None or not q.strip():
        raise bad_request("MISSING_QUERY", "Parameter q harus diisi")
    q = q.strip()
    if len(q) < 2:
        raise bad_request("INVALID_QUERY", "Query pencarian minimal 2 karakter")

    result = await db.execute(
        select(Stock)
        .where(
            Stock.symbol.contains(q.upper(), autoescape=True)
            | func.lower(Stock.name).contains(q.lower(), autoescape=True)
        )
        .order_by(Stock.symbol)
        .limit(min(limit, MAX_SEARCH_RESULTS))
    )
    stocks = result.scalars().all()

    return envelope(
        data=[
            {
                "symbol": s.symbol,
                "name": s.name,
                "price": s.price,
                "changePercent": s.change_percent,
            }
            for s in stocks
        ],
        meta={"query": q, "found": len(stocks)},
    )


@router.get("/stocks/{symbol}")
async def get_stock(
    symbol: str,
    db: AsyncSession = Depends(get_db),
):
    """Full snapshot for one stock. Symbol lookup is case-insensitive."""
    stock = await get_stock_or_404(db, symbol)
    return envelope(data=stock_to_dict(stock))


# =============================================================================
# HISTORY
# =============================================================================


def _bucket_key(day: date, interval: str) -> tuple[int, int]:
    if interval == "weekly":
        iso = day.isocalendar()
        return iso[0], iso[1]
    return day.year, day.month


def aggregate_bars(bars: list[StockHistory], interval: str) -> list[dict]:
    """
    Roll daily bars up into weekly (ISO week) or monthly bars.

    Each bar is dated by its first trading day; open is the first open,
    close the last close, high/low the extremes and volume the sum.
    """
    if interval == "daily":
        return [bar_to_dict(bar) for bar in bars]

    aggregated = []
    for _, group in groupby(bars, key=lambda bar: _bucket_key(bar.date, interval)):
        group = list(group)
        aggregated.append({
            "date": group[0].date,
            "open": group[0].open,
            "high": max(bar.high for bar in group),
            "low": min(bar.low for bar in group),
            "close": group[-1].close,
            "volume": sum(bar.volume for bar in group),
        })
    return aggregated


@router.get("/stocks/{symbol}/history")
async def get_stock_history(
    symbol: str,
    from_date: date = Query(..., alias="from", description="Start date (YYYY-MM-DD)"),
    to_date: date = Query(..., alias="to", description="End date (YYYY-MM-DD)"),
    interval: Literal["daily", "weekly", "monthly"] = Query("daily"),
    db: AsyncSession = Depends(get_db),
):
    """OHLCV bars for a stock between two dates, inclusive, oldest first."""
    if from_date > to_date:
        raise bad_request("INVALID_QUERY", "Parameter from tidak boleh setelah to")

    stock = await get_stock_or_404(db, symbol)
    result = await db.execute(
        select(StockHistory)
        .where(
            StockHistory.stock_id == stock.id,
            StockHistory.date >= from_date,
            StockHistory.date <= to_date,
        )
        .order_by(StockHistory.date)
    )
    prices = aggregate_bars(list(result.scalars().all()), interval)

    return envelope(
        data={"symbol": stock.symbol, "interval": interval, "prices": prices},
        meta={"from": from_date, "to": to_date, "count": len(prices)},
    )


# =============================================================================
# MARKET
# =============================================================================


@router.get("/market/summary")
async def get_market_summary(db: AsyncSession = Depends(get_db)):
    """Advancing/declining counts and market-wide totals."""
    result = await db.execute(
        select(
            func.count(Stock.id).label("total_stocks"),
            func.sum(case((Stock.change_percent > 0, 1), else_=0)).label("advancing"),
            func.sum(case((Stock.change_percent < 0, 1), else_=0)).label("declining"),
            func.sum(case((Stock.change_percent == 0, 1), else_=0)).label("unchanged"),
            func.coalesce(func.sum(Stock.volume), 0).label("total_volume"),
            func.coalesce(func.sum(Stock.value), 0).label("total_value"),
            func.coalesce(func.sum(Stock.foreign_buy), 0).label("foreign_buy"),
            func.coalesce(func.sum(Stock.foreign_sell), 0).label("foreign_sell"),
            func.max(Stock.last_update).label("last_update"),
        )
    )
    row = result.one()

    # SUM(bigint) comes back as numeric on PostgreSQL
    foreign_buy = int(row.foreign_buy)
    foreign_sell = int(row.foreign_sell)
    return envelope(data={
        "totalStocks": row.total_stocks,
        "advancing": int(row.advancing or 0),
        "declining": int(row.declining or 0),
        "unchanged": int(row.unchanged or 0),
        "totalVolume": int(row.total_volume),
        "totalValue": int(row.total_value),
        "foreignBuy": foreign_buy,
        "foreignSell": foreign_sell,
        "foreignNet": foreign_buy - foreign_sell,
        "lastUpdate": row.last_update,
    })
