"""
Admin endpoints for StockAPI.

All routes require a session token belonging to an ADMIN user.

Endpoints:
- GET /admin/users - Paginated user list
- PUT /admin/users/{user_id} - Change name, role, plan or quotas
- GET /admin/stats - Totals, users by plan, recent API usage
- GET /admin/stocks - All stocks, newest first
- POST /admin/stocks - Add a stock
- PUT /admin/stocks/{stock_id} - Update a stock
- DELETE /admin/stocks/{stock_id} - Delete a stock and its history
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.helpers import page_meta, stock_not_found, stock_to_dict, user_to_dict
from app.core.auth import Identity, require_admin
from app.core.database import get_db
from app.core.errors import bad_request, conflict, not_found
from app.core.quota import get_plan_quotas
from app.core.serialization import envelope
from app.models import ApiUsage, Plan, Role, Stock, User, utcnow

logger = structlog.get_logger()

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(require_admin)],
)

BIGINT_MAX = 2**63 - 1
MAX_PAGE_SIZE = 100


# =============================================================================
# Request Models
# =============================================================================


class _CamelModel(BaseModel):
    """Accepts camelCase (API) or snake_case keys; rejects anything else."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class StockCreate(_CamelModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    name: str = Field(..., min_length=1, max_length=255)
    sector: Optional[str] = Field(None, max_length=100)
    subsector: Optional[str] = Field(None, max_length=100)

    price: Decimal = Field(..., ge=0)
    # Default to price when omitted
    open: Optional[Decimal] = Field(None, ge=0)
    high: Optional[Decimal] = Field(None, ge=0)
    low: Optional[Decimal] = Field(None, ge=0)
    close: Optional[Decimal] = Field(None, ge=0)
    change: Decimal = Decimal("0")
    change_percent: Decimal = Decimal("0")

    volume: int = Field(0, ge=0, le=BIGINT_MAX)
    value: int = Field(0, ge=0, le=BIGINT_MAX)
    market_cap: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    shares: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    foreign_buy: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    foreign_sell: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)


class StockUpdate(_CamelModel):
    """Partial update. Only fields present in the body are written."""
    symbol: Optional[str] = Field(None, min_length=1, max_length=20)
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    sector: Optional[str] = Field(None, max_length=100)
    subsector: Optional[str] = Field(None, max_length=100)

    price: Optional[Decimal] = Field(None, ge=0)
    open: Optional[Decimal] = Field(None, ge=0)
    high: Optional[Decimal] = Field(None, ge=0)
    low: Optional[Decimal] = Field(None, ge=0)
    close: Optional[Decimal] = Field(None, ge=0)
    change: Optional[Decimal] = None
    change_percent: Optional[Decimal] = None

    volume: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    value: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    market_cap: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    shares: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    foreign_buy: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)
    foreign_sell: Optional[int] = Field(None, ge=0, le=BIGINT_MAX)


class UserUpdate(_CamelModel):
    """Admin changes to an account. A plan change resets quotas to the plan defaults."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    role: Optional[Role] = None
    plan: Optional[Plan] = None
    monthly_quota: Optional[int] = Field(None, ge=-1)
    daily_quota: Optional[int] = Field(None, ge=-1)


# Stock columns that may not be cleared by an update
REQUIRED_STOCK_FIELDS = frozenset({
    "symbol", "name", "price", "open", "high", "low", "close",
    "change", "change_percent", "volume", "value",
})


def _stock_exists():
    return conflict("STOCK_EXISTS", "Stock dengan symbol ini sudah ada")


def _user_not_found():
    return not_found("USER_NOT_FOUND", "User tidak ditemukan")


async def _symbol_taken(db: AsyncSession, symbol: str, exclude_id: Optional[UUID] = None) -> bool:
    query = select(Stock.id).where(Stock.symbol == symbol)
    if exclude_id is not None:
        query = query.where(Stock.id != exclude_id)
    return (await db.execute(query)).scalar_one_or_none() is not None


# =============================================================================
# USERS
# =============================================================================


@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, description="Results per page (max 100)"),
    db: AsyncSession = Depends(get_db),
):
    """List users, newest first."""
    per_page = min(limit, MAX_PAGE_SIZE)
    total = (await db.execute(select(func.count(User.id)))).scalar_one()
    result = await db.execute(
        select(User)
        .order_by(User.created_at.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    users = result.scalars().all()

    return envelope(
        data=[user_to_dict(u) for u in users],
        meta=page_meta(total, page, per_page),
    )


@router.put("/users/{user_id}")
async def update_user(
    user_id: UUID,
    body: UserUpdate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Change a user's name, role, plan or quota ceilings."""
    user = await db.get(User, user_id)
    if user is None:
        raise _user_not_found()

    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None:
            raise bad_request("INVALID_FIELDS", f"Field {to_camel(field)} tidak boleh kosong")

    if "plan" in changes:
        monthly_quota, daily_quota = get_plan_quotas(changes["plan"])
        changes.setdefault("monthly_quota", monthly_quota)
        changes.setdefault("daily_quota", daily_quota)

    for field, value in changes.items():
        setattr(user, field, value)
    await db.commit()

    logger.info(
        "admin.user_updated",
        admin_id=str(admin.id),
        user_id=str(user.id),
        fields=sorted(changes),
    )
    return envelope(data=user_to_dict(user), message="User berhasil diupdate")


# =============================================================================
# STATS
# =============================================================================


@router.get("/stats")
async def get_stats(db: AsyncSession = Depends(get_db)):
    """Totals, users by plan and the 10 most recent API calls."""
    total_users = (await db.execute(select(func.count(User.id)))).scalar_one()
    total_stocks = (await db.execute(select(func.count(Stock.id)))).scalar_one()
    total_api_calls = (await db.execute(select(func.count(ApiUsage.id)))).scalar_one()

    plan_rows = await db.execute(select(User.plan, func.count(User.id)).group_by(User.plan))
    users_by_plan = {plan.value: count for plan, count in plan_rows.all()}

    recent = await db.execute(
        select(ApiUsage, User.name, User.email)
        .join(User, ApiUsage.user_id == User.id)
        .order_by(ApiUsage.timestamp.desc())
        .limit(10)
    )
    recent_usage = [
        {
            "id": usage.id,
            "endpoint": usage.endpoint,
            "method": usage.method,
            "statusCode": usage.status_code,
            "timestamp": usage.timestamp,
            "user": {"name": name, "email": email},
        }
        for usage, name, email in recent.all()
    ]

    return envelope(data={
        "totalUsers": total_users,
        "totalStocks": total_stocks,
        "totalApiCalls": total_api_calls,
        "usersByPlan": users_by_plan,
        "recentUsage": recent_usage,
    })


# =============================================================================
# STOCKS
# =============================================================================


@router.get("/stocks")
async def list_all_stocks(db: AsyncSession = Depends(get_db)):
    """Every stock, newest first."""
    result = await db.execute(select(Stock).order_by(Stock.created_at.desc()))
    return envelope(data=[stock_to_dict(s) for s in result.scalars().all()])


@router.post("/stocks", status_code=status.HTTP_201_CREATED)
async def create_stock(
    body: StockCreate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Add a stock. OHLC values default to the price."""
    symbol = body.symbol.strip().upper()
    if not symbol or not body.name.strip():
        raise bad_request("MISSING_FIELDS", "Symbol, name, dan price harus diisi")
    if await _symbol_taken(db, symbol):
        raise _stock_exists()

    fields = body.model_dump()
    for price_field in ("open", "high", "low", "close"):
        if fields[price_field] is None:
            fields[price_field] = body.price
    fields["symbol"] = symbol
    fields["name"] = body.name.strip()

    stock = Stock(**fields)
    db.add(stock)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise _stock_exists()

    logger.info("admin.stock_created", admin_id=str(admin.id), symbol=symbol)
    return envelope(data=stock_to_dict(stock), message="Stock berhasil ditambahkan")


@router.put("/stocks/{stock_id}")
async def update_stock(
    stock_id: UUID,
    body: StockUpdate,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update the fields present in the body and stamp last_update."""
    stock = await db.get(Stock, stock_id)
    if stock is None:
        raise stock_not_found()

    changes = body.model_dump(exclude_unset=True)
    cleared = sorted(f for f in REQUIRED_STOCK_FIELDS if f in changes and changes[f] is None)
    if cleared:
        raise bad_request("INVALID_FIELDS", f"Field tidak boleh kosong: {', '.join(cleared)}")

    if "symbol" in changes:
        changes["symbol"] = changes["symbol"].strip().upper()
        if await _symbol_taken(db, changes["symbol"], exclude_id=stock.id):
            raise _stock_exists()

    for field, value in changes.items():
        setattr(stock, field, value)
    stock.last_update = utcnow()
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise _stock_exists()

    logger.info(
        "admin.stock_updated",
        admin_id=str(admin.id),
        symbol=stock.symbol,
        fields=sorted(changes),
    )
    return envelope(data=stock_to_dict(stock), message="Stock berhasil diupdate")


@router.delete("/stocks/{stock_id}")
async def delete_stock(
    stock_id: UUID,
    admin: Identity = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a stock. Its history goes with it (ON DELETE CASCADE)."""
    stock = await db.get(Stock, stock_id)
    if stock is None:
        raise stock_not_found()

    symbol = stock.symbol
    await db.delete(stock)
    await db.commit()

    logger.info("admin.stock_deleted", admin_id=str(admin.id), symbol=symbol)
    return envelope(message="Stock berhasil dihapus")
