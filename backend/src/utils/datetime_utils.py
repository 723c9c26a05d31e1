"""
Datetime utilities for consistent timezone handling across the application.

This module provides utilities to ensure all datetime operations use timezone-aware
datetimes consistently. Business logic ("today", queue progress) runs in the
clinic's local time, configured as a fixed UTC offset.
"""

import logging
from datetime import datetime, timezone, timedelta, date
from typing import Optional

from core.config import CLINIC_UTC_OFFSET_MINUTES

logger = logging.getLogger(__name__)

# Clinic timezone constant (fixed offset, default UTC+5:30)
CLINIC_TZ = timezone(timedelta(minutes=CLINIC_UTC_OFFSET_MINUTES))


def clinic_now() -> datetime:
    """
    Get current clinic-local datetime.

    Returns:
        Current datetime with the clinic timezone attached
    """
    return datetime.now(CLINIC_TZ)


def clinic_today() -> date:
    """Get today's date in clinic-local time."""
    return clinic_now().date()


def ensure_clinic_tz(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in clinic time.

    Naive datetimes are assumed to already be clinic-local (SQLite returns
    stored timestamps without tzinfo).

    Args:
        dt: Datetime to normalise

    Returns:
        Timezone-aware datetime in clinic timezone, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=CLINIC_TZ)
    return dt.astimezone(CLINIC_TZ)


def parse_date_string(date_str: str) -> date:
    """
    Parse a date string in YYYY-MM-DD or YYYY/MM/DD format.

    Accepts both formats and normalizes single-digit months/days
    (e.g. "2022-1-1", "2022/01/01").

    Raises:
        ValueError: If date string cannot be parsed
    """
    if not date_str or not date_str.strip():
        raise ValueError("Date string cannot be empty")

    date_str = date_str.strip()

    if '/' in date_str:
        parts = date_str.split('/')
    elif '-' in date_str:
        parts = date_str.split('-')
    else:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    if len(parts) != 3:
        raise ValueError(f"Invalid date format (expected YYYY-MM-DD or YYYY/MM/DD): {date_str}")

    try:
        year, month, day = (int(part) for part in parts)
        return date(year, month, day)
    except ValueError as e:
        raise ValueError(f"Invalid date: {date_str}") from e
