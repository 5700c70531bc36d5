"""
Unit tests for the response envelope and JSON-safe conversion.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from app.core.serialization import MAX_SAFE_INTEGER, envelope, to_json_safe
from app.models import Plan


class TestToJsonSafe:
    """Tests for to_json_safe."""

    @pytest.mark.unit
    def test_big_int_fields_are_strings(self):
        """Volume-style fields are always strings, even when small."""
        result = to_json_safe({"volume": 10, "marketCap": 1_234_567_890_000, "foreignNet": -5})
        assert result == {"volume": "10", "marketCap": "1234567890000", "foreignNet": "-5"}

    @pytest.mark.unit
    def test_ordinary_ints_stay_numbers(self):
        """Counts outside the big-int set stay numeric."""
        result = to_json_safe({"total": 8, "page": 1, "apiCalls": 42})
        assert result == {"total": 8, "page": 1, "apiCalls": 42}

    @pytest.mark.unit
    def test_unsafe_ints_anywhere_are_strings(self):
        """Integers beyond 2**53 - 1 are stringified under any key."""
        result = to_json_safe({"count": MAX_SAFE_INTEGER + 1, "ok": MAX_SAFE_INTEGER})
        assert result == {"count": str(MAX_SAFE_INTEGER + 1), "ok": MAX_SAFE_INTEGER}

    @pytest.mark.unit
    def test_recurses_through_lists_and_dicts(self):
        """Nested structures are converted all the way down."""
        payload = {
            "prices": [{"date": date(2025, 3, 3), "close": Decimal("105.50"), "volume": 1000}],
            "meta": {"nested": [{"value": 7}]},
        }
        result = to_json_safe(payload)
        assert result["prices"] == [{"date": "2025-03-03", "close": 105.5, "volume": "1000"}]
        assert result["meta"] == {"nested": [{"value": "7"}]}

    @pytest.mark.unit
    def test_bool_and_none_untouched(self):
        """Booleans are not treated as integers."""
        assert to_json_safe({"volume": True, "shares": None}) == {"volume": True, "shares": None}

    @pytest.mark.unit
    def test_scalar_types(self):
        """Decimal, datetime, UUID and enums become JSON primitives."""
        uid = UUID("12345678-1234-5678-1234-567812345678")
        ts = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        assert to_json_safe(Decimal("9875.0000")) == 9875.0
        assert to_json_safe(ts) == "2025-01-02T03:04:05+00:00"
        assert to_json_safe(uid) == str(uid)
        assert to_json_safe(Plan.PRO) == "PRO"


class TestEnvelope:
    """Tests for envelope."""

    @pytest.mark.unit
    def test_success_only(self):
        assert envelope() == {"success": True}

    @pytest.mark.unit
    def test_includes_present_parts(self):
        """data, meta and message appear only when given."""
        body = envelope(data=[{"volume": 1}], meta={"total": 1}, message="ok")
        assert body == {
            "success": True,
            "message": "ok",
            "data": [{"volume": "1"}],
            "meta": {"total": 1},
        }
