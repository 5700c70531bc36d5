"""
API key generation and format validation.

Format: sk_live_<64 lowercase hex chars> (32 bytes from the OS CSPRNG).
"""

import re
import secrets

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import User

API_KEY_PREFIX = "sk_live_"
API_KEY_RANDOM_BYTES = 32
_API_KEY_PATTERN = re.compile(
    rf"{re.escape(API_KEY_PREFIX)}[a-f0-9]{{{API_KEY_RANDOM_BYTES * 2}}}"
)


def generate_api_key() -> str:
    """Generate a new API key."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(API_KEY_RANDOM_BYTES)}"


def is_valid_api_key_format(candidate) -> bool:
    """Syntactic check only; says nothing about whether the key is registered."""
    if not isinstance(candidate, str):
        return False
    return _API_KEY_PATTERN.fullmatch(candidate) is not None


async def issue_unique_api_key(db: AsyncSession, attempts: int = 5) -> str:
    """Generate a key no user currently holds.

    Raises RuntimeError if every attempt collides.
    """
    for _ in range(attempts):
        candidate = generate_api_key()
        result = await db.execute(select(User.id).where(User.api_key == candidate))
        if result.scalar_one_or_none() is None:
            return candidate
    raise RuntimeError(f"Could not generate a unique API key after {attempts} attempts")
