"""
Plan tiers and per-user call quotas.

Plan ceilings (monthly / daily calls):
- FREE:       1,000 / 100
- STARTER:   50,000 / 5,000
- PRO:      500,000 / 25,000
- ENTERPRISE: unlimited

Every data API call goes through consume_quota(), which rolls the daily and
monthly windows over, checks both ceilings and increments the counters in a
single UPDATE ... RETURNING statement. Concurrent calls near a ceiling are
serialized by the row lock, so N calls against N-1 remaining admit exactly
N-1.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import case, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.models import Plan, User, utcnow

logger = structlog.get_logger()
settings = get_settings()

UNLIMITED = -1


# =============================================================================
# Plan Configuration
# =============================================================================


PLAN_CONFIG = {
    Plan.FREE: {"monthly_quota": 1_000, "daily_quota": 100},
    Plan.STARTER: {"monthly_quota": 50_000, "daily_quota": 5_000},
    Plan.PRO: {"monthly_quota": 500_000, "daily_quota": 25_000},
    Plan.ENTERPRISE: {"monthly_quota": UNLIMITED, "daily_quota": UNLIMITED},
}


def get_plan_quotas(plan: Plan) -> tuple[int, int]:
    """Return (monthly_quota, daily_quota) for a plan."""
    config = PLAN_CONFIG[Plan(plan)]
    return config["monthly_quota"], config["daily_quota"]


# =============================================================================
# Accounting Windows
# =============================================================================


@dataclass(frozen=True)
class QuotaWindows:
    """Window boundaries in UTC for a given instant."""
    day_start: datetime
    next_day: datetime
    month_start: datetime
    next_month: datetime


def get_quota_windows(now: datetime, tz_name: Optional[str] = None) -> QuotaWindows:
    """Compute the current day/month boundaries in the quota time zone."""
    tz = ZoneInfo(tz_name or settings.quota_timezone)
    local = _as_utc(now).astimezone(tz)

    day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    next_day = day_start + timedelta(days=1)
    month_start = day_start.replace(day=1)
    if month_start.month == 12:
        next_month = month_start.replace(year=month_start.year + 1, month=1)
    else:
        next_month = month_start.replace(month=month_start.month + 1)

    return QuotaWindows(
        day_start=day_start.astimezone(timezone.utc),
        next_day=next_day.astimezone(timezone.utc),
        month_start=month_start.astimezone(timezone.utc),
        next_month=next_month.astimezone(timezone.utc),
    )


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Quota Check
# =============================================================================


@dataclass
class QuotaResult:
    """Outcome of one quota check."""
    allowed: bool
    daily_used: int = 0
    daily_limit: int = UNLIMITED
    monthly_used: int = 0
    monthly_limit: int = UNLIMITED
    exceeded: Optional[str] = None  # "daily" or "monthly"
    retry_after: Optional[int] = None  # seconds until the exceeded window resets
    user_found: bool = True

    def headers(self) -> dict[str, str]:
        """Quota headers for the response."""
        headers = {}
        if self.daily_limit != UNLIMITED:
            headers["X-Quota-Limit-Day"] = str(self.daily_limit)
            headers["X-Quota-Remaining-Day"] = str(max(0, self.daily_limit - self.daily_used))
        if self.monthly_limit != UNLIMITED:
            headers["X-Quota-Limit-Month"] = str(self.monthly_limit)
            headers["X-Quota-Remaining-Month"] = str(max(0, self.monthly_limit - self.monthly_used))
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def effective_usage(user_row, windows: QuotaWindows) -> tuple[int, int]:
    """(daily_used, monthly_used) after applying any pending rollover."""
    last_reset = _as_utc(user_row.last_reset)
    daily_used = 0 if last_reset < windows.day_start else user_row.daily_calls
    monthly_used = 0 if last_reset < windows.month_start else user_row.monthly_calls
    return daily_used, monthly_used


async def consume_quota(
    db: AsyncSession,
    user_id: UUID,
    now: Optional[datetime] = None,
) -> QuotaResult:
    """
    Check-then-increment a user's quota as one atomic statement.

    The statement only matches the user's row when both windows are below
    their ceilings (after rollover), so a rejected call never increments.
    An admitted call counts as used even if the handler fails afterwards.
    """
    now = _as_utc(now or utcnow())
    windows = get_quota_windows(now)

    new_day = User.last_reset < windows.day_start
    new_month = User.last_reset < windows.month_start
    daily_used = case((new_day, 0), else_=User.daily_calls)
    monthly_used = case((new_month, 0), else_=User.monthly_calls)

    stmt = (
        update(User)
        .where(
            User.id == user_id,
            or_(User.daily_quota < 0, daily_used < User.daily_quota),
            or_(User.monthly_quota < 0, monthly_used < User.monthly_quota),
        )
        .values(
            api_calls=User.api_calls + 1,
            daily_calls=daily_used + 1,
            monthly_calls=monthly_used + 1,
            last_reset=case(
                (new_day, literal(now, User.last_reset.type)),
                else_=User.last_reset,
            ),
        )
        .returning(
            User.daily_calls,
            User.daily_quota,
            User.monthly_calls,
            User.monthly_quota,
        )
        .execution_options(synchronize_session=False)
    )
    row = (await db.execute(stmt)).one_or_none()
    await db.commit()

    if row is not None:
        return QuotaResult(
            allowed=True,
            daily_used=row.daily_calls,
            daily_limit=row.daily_quota,
            monthly_used=row.monthly_calls,
            monthly_limit=row.monthly_quota,
        )

    return await _rejection(db, user_id, windows, now)


async def _rejection(
    db: AsyncSession,
    user_id: UUID,
    windows: QuotaWindows,
    now: datetime,
) -> QuotaResult:
    """Work out which ceiling blocked the call."""
    result = await db.execute(
        select(
            User.daily_calls,
            User.daily_quota,
            User.monthly_calls,
            User.monthly_quota,
            User.last_reset,
        ).where(User.id == user_id)
    )
    user_row = result.one_or_none()
    if user_row is None:
        return QuotaResult(allowed=False, user_found=False)

    daily_used, monthly_used = effective_usage(user_row, windows)
    monthly_blocked = (
        user_row.monthly_quota != UNLIMITED and monthly_used >= user_row.monthly_quota
    )
    if monthly_blocked:
        exceeded, resets_at = "monthly", windows.next_month
    else:
        exceeded, resets_at = "daily", windows.next_day

    quota_result = QuotaResult(
        allowed=False,
        daily_used=daily_used,
        daily_limit=user_row.daily_quota,
        monthly_used=monthly_used,
        monthly_limit=user_row.monthly_quota,
        exceeded=exceeded,
        retry_after=max(1, int((resets_at - now).total_seconds())),
    )
    logger.info(
        "quota.exceeded",
        user_id=str(user_id),
        window=exceeded,
        daily_used=daily_used,
        monthly_used=monthly_used,
    )
    return quota_result
