"""
Authentication endpoints for StockAPI.

Endpoints:
- POST /auth/register - Create account, get session token and API key
- POST /auth/login - Exchange email/password for a session token
- GET /auth/profile - Current user, plan, quotas and API key
- POST /auth/regenerate-key - Replace the API key (old key stops working)
"""

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.helpers import user_to_dict
from app.core.api_keys import issue_unique_api_key
from app.core.auth import (
    Identity,
    create_session_token,
    hash_password,
    password_problem,
    require_session,
    verify_password,
)
from app.core.cache import auth_rate_limit
from app.core.database import get_db
from app.core.errors import bad_request, conflict, unauthorized
from app.core.posthog import capture_event as posthog_capture, identify_user as posthog_identify
from app.core.quota import UNLIMITED, effective_usage, get_plan_quotas, get_quota_windows
from app.core.serialization import envelope
from app.models import Plan, Role, User, utcnow

logger = structlog.get_logger()

router = APIRouter(prefix="/auth", tags=["Authentication"])


# =============================================================================
# Request Models
# =============================================================================


class RegisterRequest(BaseModel):
    """Request body for registration."""
    name: str = Field(..., max_length=255, description="Display name")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., description="At least 6 characters")


class LoginRequest(BaseModel):
    """Request body for login."""
    email: str
    password: str


def _email_taken():
    return conflict("EMAIL_EXISTS", "Email sudah terdaftar")


def _bad_credentials():
    return unauthorized("INVALID_CREDENTIALS", "Email atau password salah")


# =============================================================================
# Endpoints
# =============================================================================


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(auth_rate_limit)],
)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new account on the FREE plan.

    Returns a session token for the dashboard and an API key for the data
    API. The key is issued immediately.
    """
    if not request.name.strip() or not request.password:
        raise bad_request("MISSING_FIELDS", "Nama, email, dan password harus diisi")

    problem = password_problem(request.password)
    if problem:
        raise bad_request("INVALID_PASSWORD", problem)

    existing = await db.execute(select(User.id).where(User.email == request.email))
    if existing.scalar_one_or_none():
        raise _email_taken()

    monthly_quota, daily_quota = get_plan_quotas(Plan.FREE)
    user = User(
        name=request.name.strip(),
        email=request.email,
        password=await hash_password(request.password),
        role=Role.USER,
        plan=Plan.FREE,
        api_key=await issue_unique_api_key(db),
        monthly_quota=monthly_quota,
        daily_quota=daily_quota,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with a concurrent registration for the same email
        await db.rollback()
        raise _email_taken()

    logger.info("auth.registered", user_id=str(user.id), plan=user.plan.value)
    posthog_capture(
        distinct_id=str(user.id),
        event="user_registered",
        properties={"plan": user.plan.value},
    )
    posthog_identify(
        distinct_id=str(user.id),
        properties={"email": user.email, "plan": user.plan.value},
    )

    return envelope(
        data={"user": user_to_dict(user), "token": create_session_token(user.id)},
        message="Registrasi berhasil",
    )


@router.post("/login", dependencies=[Depends(auth_rate_limit)])
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """Verify email/password and issue a session token."""
    if not request.email or not request.password:
        raise bad_request("MISSING_FIELDS", "Email dan password harus diisi")

    result = await db.execute(select(User).where(User.email == request.email))
    user = result.scalar_one_or_none()
    if user is None:
        logger.info("auth.login_failed", reason="unknown_email")
        raise _bad_credentials()

    if not await verify_password(request.password, user.password):
        logger.info("auth.login_failed", reason="bad_password", user_id=str(user.id))
        raise _bad_credentials()

    logger.info("auth.login", user_id=str(user.id))
    return envelope(
        data={"user": user_to_dict(user), "token": create_session_token(user.id)},
        message="Login berhasil",
    )


@router.get("/profile")
async def get_profile(
    identity: Identity = Depends(require_session),
    db: AsyncSession = Depends(get_db),
):
    """Current user, plan, quota usage and API key."""
    result = await db.execute(select(User).where(User.id == identity.id))
    user = result.scalar_one()

    daily_used, monthly_used = effective_usage(user, get_quota_windows(utcnow()))
    data = user_to_dict(user)
    data["usage"] = {
        "dailyCalls": daily_used,
        "monthlyCalls": monthly_used,
        "dailyRemaining": (
            None if user.daily_quota == UNLIMITED else max(0, user.daily_quota - daily_used)
        ),
        "monthlyRemaining": (
            None if user.monthly_quota == UNLIMITED else max(0, user.monthly_quota - monthly_used)
        ),
    }
    return envelope(data=data)


@router.post("/regenerate-key")
async def regenerate_api_key(
    identity: Identity = Depends(require_session),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace the caller's API key.

    The previous key stops authenticating as soon as this commits. Session
    tokens are unaffected.
    """
    new_key = await issue_unique_api_key(db)
    await db.execute(
        update(User)
        .where(User.id == identity.id)
        .values(api_key=new_key, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    logger.info("auth.api_key_regenerated", user_id=str(identity.id))
    posthog_capture(distinct_id=str(identity.id), event="api_key_regenerated")

    return envelope(data={"apiKey": new_key}, message="API Key berhasil di-generate")
