"""Database models for StockAPI"""

from .schema import (
    ApiUsage,
    Base,
    Plan,
    Role,
    Stock,
    StockHistory,
    User,
    utcnow,
)

__all__ = [
    "ApiUsage",
    "Base",
    "Plan",
    "Role",
    "Stock",
    "StockHistory",
    "User",
    "utcnow",
]
