"""
Date Normalization Module

Parses untrusted payment/maturity dates into timezone-aware UTC datetimes and
provides the calendar-day helpers used by dedup keys, range filters and the
status engine.
"""

from datetime import datetime, timezone, date, timedelta, time
from typing import Any, Optional

# Formats produced by the document parser and legacy exports
_FALLBACK_FORMATS = (
    "%m/%d/%y",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%b %d, %Y",
    "%B %d, %Y",
)

SECONDS_PER_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a date-like value into an aware UTC datetime.

    Unparseable input returns None instead of raising so a malformed row
    never aborts a batch.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return ensure_utc(value)

    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)

    # Extended JSON export: {"$date": "..."}
    if isinstance(value, dict) and '$date' in value:
        return parse_datetime(value['$date'])

    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None

    iso_text = text[:-1] + '+00:00' if text.endswith('Z') else text
    try:
        return ensure_utc(datetime.fromisoformat(iso_text))
    except ValueError:
        pass

    for fmt in _FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    return None


def day_key(value: Any) -> str:
    """UTC calendar day as YYYY-MM-DD, or an empty string when no date"""
    parsed = parse_datetime(value)
    if parsed is None:
        return ""
    return parsed.date().isoformat()


def start_of_day(value: Any) -> Optional[datetime]:
    """00:00:00.000 UTC of the value's calendar day"""
    parsed = parse_datetime(value)
    if parsed is None:
        return None
    return datetime.combine(parsed.date(), time.min, tzinfo=timezone.utc)


def end_of_day(value: Any) -> Optional[datetime]:
    """23:59:59.999 UTC of the value's calendar day"""
    start = start_of_day(value)
    if start is None:
        return None
    return start + timedelta(days=1) - timedelta(milliseconds=1)


def days_between(earlier: datetime, later: datetime) -> int:
    """Whole days elapsed from earlier to later (floored)"""
    elapsed = ensure_utc(later) - ensure_utc(earlier)
    return int(elapsed.total_seconds() // SECONDS_PER_DAY)
