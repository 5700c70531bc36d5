"""Service banner and health check."""

from fastapi import APIRouter, Depends
from sqlalchemy import literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import cache_ping
from app.core.config import get_settings
from app.core.database import get_db
from app.core.serialization import envelope
from app.models import utcnow

router = APIRouter(tags=["System"])


@router.get("/")
async def root():
    """Service banner with the main entry points."""
    settings = get_settings()
    return envelope(
        data={
            "name": settings.api_title,
            "description": settings.api_description,
            "version": settings.api_version,
            "docs": "/docs",
            "endpoints": {
                "auth": "/auth",
                "stocks": "/api/v1/stocks",
                "market": "/api/v1/market/summary",
                "admin": "/admin",
                "health": "/health",
            },
        },
        message="StockAPI berjalan",
    )


@router.get("/health")
async def health_check(db: AsyncSession = Depends(get_db)):
    """Full health check endpoint with database and cache verification."""
    settings = get_settings()
    checks = {}

    # Database check
    try:
        await db.execute(select(literal(1)))
        checks["database"] = "healthy"
    except Exception as e:
        checks["database"] = f"unhealthy: {str(e)}"

    # Redis check
    if not settings.has_redis:
        checks["cache"] = "not configured"
    else:
        success, message = await cache_ping()
        checks["cache"] = "healthy" if success else f"failed: {message}"

    # Only database is required for healthy status
    healthy = checks["database"] == "healthy"

    return envelope(data={
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
        "version": settings.api_version,
        "timestamp": utcnow(),
    })
