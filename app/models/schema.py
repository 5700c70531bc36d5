"""
StockAPI - Database Schema

Users and their API usage, plus stock snapshots and daily price history.
"""

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Role(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class Plan(str, enum.Enum):
    FREE = "FREE"
    STARTER = "STARTER"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"


# Prices are stored with 4 decimal places (IDX ticks are whole rupiah,
# history bars carry fractional OHLC values)
PRICE = Numeric(18, 4)
PERCENT = Numeric(10, 4)


# =============================================================================
# AUTHENTICATION & USAGE TABLES
# =============================================================================


class User(Base):
    """User accounts for dashboard login and API access."""

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password: Mapped[str] = mapped_column(String(255), nullable=False)  # bcrypt hash

    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, length=20), default=Role.USER, nullable=False
    )
    plan: Mapped[Plan] = mapped_column(
        Enum(Plan, native_enum=False, length=20), default=Plan.FREE, nullable=False
    )

    # Stored in plaintext: the dashboard shows the full key back to its owner
    api_key: Mapped[Optional[str]] = mapped_column(String(72), unique=True)

    # Usage counters
    api_calls: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)  # lifetime
    daily_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    monthly_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Ceilings (-1 = unlimited)
    monthly_quota: Mapped[int] = mapped_column(Integer, default=1000, nullable=False)
    daily_quota: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    last_reset: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )

    # Relationships
    usage: Mapped[list["ApiUsage"]] = relationship(
        back_populates="user", cascade="all, delete-orphan", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_users_plan", "plan"),
        Index("ix_users_created_at", "created_at"),
    )


class ApiUsage(Base):
    """One row per data API call, including rejected ones."""

    __tablename__ = "api_usage"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )

    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    user: Mapped["User"] = relationship(back_populates="usage")

    __table_args__ = (
        Index("ix_api_usage_user_timestamp", "user_id", "timestamp"),
        Index("ix_api_usage_timestamp", "timestamp"),
    )


# =============================================================================
# MARKET DATA TABLES
# =============================================================================


class Stock(Base):
    """Latest snapshot of a listed instrument."""

    __tablename__ = "stocks"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    symbol: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Classification
    sector: Mapped[Optional[str]] = mapped_column(String(100))
    subsector: Mapped[Optional[str]] = mapped_column(String(100))

    # Prices (IDR)
    price: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    open: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    high: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    low: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    close: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    change: Mapped[Decimal] = mapped_column(PRICE, default=Decimal("0"), nullable=False)
    change_percent: Mapped[Decimal] = mapped_column(
        PERCENT, default=Decimal("0"), nullable=False
    )

    # Large counts, beyond the float-safe integer range
    volume: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    value: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    market_cap: Mapped[Optional[int]] = mapped_column(BigInteger)
    shares: Mapped[Optional[int]] = mapped_column(BigInteger)
    foreign_buy: Mapped[Optional[int]] = mapped_column(BigInteger)
    foreign_sell: Mapped[Optional[int]] = mapped_column(BigInteger)

    last_update: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    history: Mapped[list["StockHistory"]] = relationship(
        back_populates="stock",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="StockHistory.date",
    )

    __table_args__ = (
        Index("ix_stocks_sector", "sector"),
        Index("ix_stocks_created_at", "created_at"),
    )


class StockHistory(Base):
    """One daily OHLCV bar."""

    __tablename__ = "stock_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    stock_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("stocks.id", ondelete="CASCADE"), nullable=False
    )
    date: Mapped[date] = mapped_column(Date, nullable=False)

    open: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    high: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    low: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    close: Mapped[Decimal] = mapped_column(PRICE, nullable=False)
    volume: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)

    stock: Mapped["Stock"] = relationship(back_populates="history")

    __table_args__ = (
        UniqueConstraint("stock_id", "date", name="uq_stock_history_stock_date"),
        Index("ix_stock_history_stock_date", "stock_id", "date"),
    )
