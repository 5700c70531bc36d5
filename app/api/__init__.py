"""API endpoints for StockAPI"""

from .admin import router as admin_router
from .auth import router as auth_router
from .stocks import router as stocks_router
from .system import router as system_router

__all__ = ["admin_router", "auth_router", "stocks_router", "system_router"]
