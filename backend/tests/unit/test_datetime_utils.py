"""
Unit tests for datetime utilities.

Tests clinic timezone handling and date parsing.
"""

import pytest
from datetime import date, datetime, timedelta, timezone

from utils.datetime_utils import (
    CLINIC_TZ, clinic_now, clinic_today, ensure_clinic_tz, parse_date_string
)


class TestClinicTimezone:
    """Test clinic timezone utilities."""

    def test_clinic_now_returns_timezone_aware_datetime(self):
        now = clinic_now()

        assert now.tzinfo is not None
        assert now.tzinfo == CLINIC_TZ

    def test_clinic_tz_uses_configured_offset(self):
        """Default offset is UTC+5:30."""
        assert CLINIC_TZ.utcoffset(None) == timedelta(hours=5, minutes=30)

    def test_clinic_today_matches_clinic_now(self):
        assert clinic_today() in (clinic_now().date(), (clinic_now() - timedelta(seconds=1)).date())


class TestEnsureClinicTz:
    """Test ensure_clinic_tz function."""

    def test_none_passes_through(self):
        assert ensure_clinic_tz(None) is None

    def test_naive_datetime_is_assumed_clinic_local(self):
        naive = datetime(2026, 3, 1, 10, 30)
        result = ensure_clinic_tz(naive)

        assert result.tzinfo == CLINIC_TZ
        assert result.hour == 10
        assert result.minute == 30

    def test_aware_datetime_is_converted(self):
        utc_time = datetime(2026, 3, 1, 4, 30, tzinfo=timezone.utc)
        result = ensure_clinic_tz(utc_time)

        assert result.tzinfo == CLINIC_TZ
        assert result.hour == 10
        assert result.minute == 0
        assert result == utc_time


class TestParseDateString:
    """Test parse_date_string function."""

    @pytest.mark.parametrize("value,expected", [
        ("2026-03-01", date(2026, 3, 1)),
        ("2026/03/01", date(2026, 3, 1)),
        ("2026-3-1", date(2026, 3, 1)),
        (" 2026-12-31 ", date(2026, 12, 31)),
    ])
    def test_valid_formats(self, value, expected):
        assert parse_date_string(value) == expected

    @pytest.mark.parametrize("value", ["", "   ", "20260301", "2026-03", "2026-02-30", "2026-aa-01"])
    def test_invalid_formats(self, value):
        with pytest.raises(ValueError):
            parse_date_string(value)
