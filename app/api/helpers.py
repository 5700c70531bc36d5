"""
Shared helpers for StockAPI endpoints: lookups and response shaping.

Responses use camelCase keys (the dashboard and published examples depend
on them); the ORM uses snake_case.
"""

from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import not_found
from app.models import Stock, StockHistory, User


# =============================================================================
# LOOKUPS
# =============================================================================


def stock_not_found(symbol: Optional[str] = None):
    if symbol:
        return not_found("STOCK_NOT_FOUND", f"Saham dengan symbol '{symbol}' tidak ditemukan")
    return not_found("STOCK_NOT_FOUND", "Stock tidak ditemukan")


async def get_stock_or_404(db: AsyncSession, symbol: str) -> Stock:
    """Get stock by symbol (case-insensitive) or raise 404."""
    result = await db.execute(select(Stock).where(Stock.symbol == symbol.upper()))
    stock = result.scalar_one_or_none()
    if not stock:
        raise stock_not_found(symbol)
    return stock


# =============================================================================
# RESPONSE SHAPES
# =============================================================================


def user_to_dict(user: User) -> dict[str, Any]:
    """Public view of a user. Never includes the password hash."""
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "plan": user.plan,
        "apiKey": user.api_key,
        "apiCalls": user.api_calls,
        "monthlyQuota": user.monthly_quota,
        "dailyQuota": user.daily_quota,
        "lastReset": user.last_reset,
        "createdAt": user.created_at,
    }


def stock_summary(stock: Stock) -> dict[str, Any]:
    """Fields returned by the stock list endpoint."""
    return {
        "symbol": stock.symbol,
        "name": stock.name,
        "price": stock.price,
        "change": stock.change,
        "changePercent": stock.change_percent,
        "volume": stock.volume,
        "marketCap": stock.market_cap,
        "lastUpdate": stock.last_update,
    }


def stock_to_dict(stock: Stock) -> dict[str, Any]:
    """Full stock snapshot."""
    return {
        "id": stock.id,
        "symbol": stock.symbol,
        "name": stock.name,
        "sector": stock.sector,
        "subsector": stock.subsector,
        "price": stock.price,
        "open": stock.open,
        "high": stock.high,
        "low": stock.low,
        "close": stock.close,
        "change": stock.change,
        "changePercent": stock.change_percent,
        "volume": stock.volume,
        "value": stock.value,
        "marketCap": stock.market_cap,
        "shares": stock.shares,
        "foreignBuy": stock.foreign_buy,
        "foreignSell": stock.foreign_sell,
        "lastUpdate": stock.last_update,
        "createdAt": stock.created_at,
    }


def bar_to_dict(bar: StockHistory) -> dict[str, Any]:
    return {
        "date": bar.date,
        "open": bar.open,
        "high": bar.high,
        "low": bar.low,
        "close": bar.close,
        "volume": bar.volume,
    }


def page_meta(total: int, page: int, per_page: int) -> dict[str, int]:
    return {
        "total": total,
        "page": page,
        "perPage": per_page,
        "totalPages": -(-total // per_page) if per_page else 0,
    }
