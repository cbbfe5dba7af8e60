# SPDX-License-Identifier: MIT
# src/feed_alerts/utils/time_utils.py

from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError
from dateutil import parser as dateparser  # more robust than strptime


def utc_now() -> datetime:
    """Current time as a tz-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """
    Attach UTC to naive datetimes; aware ones are returned unchanged.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()


def parse_timestamp(value) -> Optional[datetime]:
    """
    Normalize a persisted timestamp (ISO-8601 text, epoch ms, or datetime)
    to a tz-aware datetime. Returns None for empty or unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, (int, float)):
        return utc_from_epoch_ms(value)
    try:
        return ensure_aware(dateparser.isoparse(str(value)))
    except (ValueError, OverflowError):
        try:
            return ensure_aware(dateparser.parse(str(value)))
        except (ValueError, OverflowError):
            return None


def utc_from_epoch_ms(ms: int) -> datetime:
    """
    Convert a millisecond-since-epoch timestamp to tz-aware UTC datetime.
    """
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def epoch_ms(dt: datetime) -> int:
    return int(ensure_aware(dt).timestamp() * 1000)


def resolve_zone(name: Optional[str]) -> Optional[tzinfo]:
    """ZoneInfo for an IANA name, or None if the name is empty or unknown."""
    if not name:
        return None
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
