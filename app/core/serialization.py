"""
Response envelope and JSON-safe conversion.

Browsers parse JSON numbers as IEEE doubles, so integers past 2**53 - 1
silently lose precision. Volume/value/market-cap style fields are always
rendered as strings, and any other integer outside the safe range is
stringified wherever it appears.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID

MAX_SAFE_INTEGER = 2**53 - 1

BIG_INT_FIELDS = frozenset({
    "volume",
    "value",
    "marketCap",
    "shares",
    "foreignBuy",
    "foreignSell",
    "foreignNet",
    "totalVolume",
    "totalValue",
})


def to_json_safe(obj: Any, key: Optional[str] = None) -> Any:
    """Recursively convert a payload into JSON-safe primitives."""
    if isinstance(obj, bool) or obj is None:
        return obj
    if isinstance(obj, int):
        if key in BIG_INT_FIELDS or abs(obj) > MAX_SAFE_INTEGER:
            return str(obj)
        return obj
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, dict):
        return {k: to_json_safe(v, k) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_json_safe(item, key) for item in obj]
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    return obj


def envelope(
    data: Any = None,
    meta: Optional[dict] = None,
    message: Optional[str] = None,
) -> dict[str, Any]:
    """Build the uniform success envelope."""
    body: dict[str, Any] = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = to_json_safe(data)
    if meta is not None:
        body["meta"] = to_json_safe(meta)
    return body
