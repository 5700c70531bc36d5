"""
Authentication utilities for StockAPI.

Two independent gates protect two route groups:

- Session tokens (``Authorization: Bearer <jwt>``) prove dashboard identity
  for /auth/profile, /auth/regenerate-key and /admin/*.
- API keys (``X-API-Key: sk_live_...``) prove caller identity for /api/v1/*
  and are the basis for quota accounting.

Session tokens are stateless HS256 JWTs valid for 24 hours. There is no
revocation list: changing a password or API key leaves issued tokens valid
until they expire.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import bcrypt
import jwt
import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from app.core.api_keys import is_valid_api_key_format
from app.core.config import get_settings
from app.core.database import get_db
from app.core.errors import ApiError, forbidden, unauthorized
from app.core.quota import consume_quota
from app.models import Plan, Role, User, utcnow

logger = structlog.get_logger()
settings = get_settings()

# Header schemes (auto_error off: we render our own error envelope)
bearer_scheme = HTTPBearer(auto_error=False)
api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_BYTES = 72  # bcrypt ignores anything past 72 bytes


# =============================================================================
# Identity
# =============================================================================


@dataclass
class Identity:
    """Non-sensitive projection of a user, attached to request.state.user."""
    id: UUID
    name: str
    email: str
    role: Role
    plan: Plan
    api_key: Optional[str]
    api_calls: int
    monthly_quota: int
    daily_quota: int

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


IDENTITY_COLUMNS = (
    User.id,
    User.name,
    User.email,
    User.role,
    User.plan,
    User.api_key,
    User.api_calls,
    User.monthly_quota,
    User.daily_quota,
)


async def _load_identity(db: AsyncSession, *criteria) -> Optional[Identity]:
    result = await db.execute(select(*IDENTITY_COLUMNS).where(*criteria))
    row = result.one_or_none()
    if row is None:
        return None
    return Identity(**row._asdict())


# =============================================================================
# Passwords
# =============================================================================


def password_problem(password: str) -> Optional[str]:
    """Return an error message if the password is unacceptable."""
    if len(password) < MIN_PASSWORD_LENGTH:
        return f"Password minimal {MIN_PASSWORD_LENGTH} karakter"
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return f"Password maksimal {MAX_PASSWORD_BYTES} byte"
    return None


def _hash_password_sync(password: str) -> str:
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def _verify_password_sync(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash or over-long password
        return False


async def hash_password(password: str) -> str:
    """Salted bcrypt hash, computed off the event loop."""
    return await run_in_threadpool(_hash_password_sync, password)


async def verify_password(password: str, password_hash: str) -> bool:
    return await run_in_threadpool(_verify_password_sync, password, password_hash)


# =============================================================================
# Session Tokens
# =============================================================================


def create_session_token(
    user_id: UUID,
    now: Optional[datetime] = None,
    ttl: Optional[timedelta] = None,
) -> str:
    """Mint a signed session token for a user."""
    issued_at = now or utcnow()
    ttl = ttl or timedelta(hours=settings.session_token_ttl_hours)
    payload = {
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + ttl,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_session_token(token: str) -> UUID:
    """
    Verify a session token and return the embedded user id.

    Raises:
        ApiError: TOKEN_EXPIRED if past expiry, INVALID_TOKEN otherwise
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
        return UUID(payload["sub"])
    except jwt.ExpiredSignatureError:
        raise unauthorized("TOKEN_EXPIRED", "Token sudah kadaluarsa")
    except (jwt.InvalidTokenError, ValueError):
        raise unauthorized("INVALID_TOKEN", "Token tidak valid")


async def require_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Require a valid session token. Raises 401 otherwise."""
    if credentials is None or not credentials.credentials:
        raise unauthorized("MISSING_TOKEN", "Token autentikasi tidak ditemukan")

    user_id = decode_session_token(credentials.credentials)
    identity = await _load_identity(db, User.id == user_id)
    if identity is None:
        raise unauthorized("INVALID_TOKEN", "Token tidak valid")

    request.state.user = identity
    return identity


async def require_admin(identity: Identity = Depends(require_session)) -> Identity:
    """Require an ADMIN session. Raises 403 for other roles."""
    if not identity.is_admin:
        logger.warning("auth.forbidden", user_id=str(identity.id), role=identity.role.value)
        raise forbidden()
    return identity


# =============================================================================
# API Keys
# =============================================================================


async def get_user_by_api_key(api_key: str, db: AsyncSession) -> Optional[Identity]:
    """Look up the owner of an API key."""
    return await _load_identity(db, User.api_key == api_key)


async def require_api_key(
    request: Request,
    api_key: Optional[str] = Depends(api_key_header),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Require a registered API key. Raises 401 otherwise."""
    if not api_key:
        raise unauthorized(
            "MISSING_API_KEY",
            "API key tidak ditemukan. Kirim melalui header X-API-Key",
        )

    api_key = api_key.strip()
    identity = None
    if is_valid_api_key_format(api_key):
        identity = await get_user_by_api_key(api_key, db)
    if identity is None:
        raise unauthorized("INVALID_API_KEY", "API key tidak valid")

    request.state.user = identity
    request.state.api_user_id = identity.id
    return identity


async def require_api_quota(
    request: Request,
    identity: Identity = Depends(require_api_key),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """Require a registered API key with quota left; counts the call."""
    result = await consume_quota(db, identity.id)
    if not result.user_found:
        # Deleted between lookup and accounting
        raise unauthorized("INVALID_API_KEY", "API key tidak valid")
    if not result.allowed:
        window = "harian" if result.exceeded == "daily" else "bulanan"
        raise ApiError(
            429,
            "QUOTA_EXCEEDED",
            f"Kuota {window} paket {identity.plan.value} sudah habis",
            headers=result.headers(),
        )

    request.state.quota_headers = result.headers()
    return identity
