"""
API usage audit log.

Every request that authenticated with an API key gets one ApiUsage row once
the response status is known, including quota rejections and handler
failures. The admin stats endpoint reads this log.
"""

from uuid import UUID

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import ApiUsage

logger = structlog.get_logger()


async def record_usage(
    db: AsyncSession,
    user_id: UUID,
    endpoint: str,
    method: str,
    status_code: int,
) -> ApiUsage:
    """Append one usage row."""
    usage = ApiUsage(
        user_id=user_id,
        endpoint=endpoint[:255],
        method=method,
        status_code=status_code,
    )
    db.add(usage)
    await db.commit()
    return usage


async def _audit(request: Request, status_code: int) -> None:
    user_id = getattr(request.state, "api_user_id", None)
    if user_id is None:
        return
    try:
        async with request.app.state.db.session() as db:
            await record_usage(
                db,
                user_id=user_id,
                endpoint=request.url.path,
                method=request.method,
                status_code=status_code,
            )
    except Exception as e:
        # The call already happened; losing one audit row must not fail it
        logger.warning("usage.record_failed", user_id=str(user_id), error=str(e))


async def usage_middleware(request: Request, call_next):
    """Attach quota headers and record API-key calls."""
    try:
        response = await call_next(request)
    except Exception:
        # Quota was already consumed; the server error handler renders the 500
        await _audit(request, 500)
        raise

    if getattr(request.state, "api_user_id", None) is not None:
        for name, value in getattr(request.state, "quota_headers", {}).items():
            response.headers[name] = value

    await _audit(request, response.status_code)
    return response
