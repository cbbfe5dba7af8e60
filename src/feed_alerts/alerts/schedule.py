# SPDX-License-Identifier: MIT
# src/feed_alerts/alerts/schedule.py
"""
Schedule gate: decides whether an alert may fire at a given instant.

Rules, in order:
- snoozed (now < snooze_until)          -> not eligible
- active_days set and today not in it   -> not eligible
- active_hours set and now outside it   -> not eligible

Days and hours are evaluated in the alert's timezone, else ``default_tz``,
else the host's local zone. Bad input fails open: an unknown timezone falls
back to the next zone in that chain and a malformed HH:MM disables the hours
check. Both are logged.
"""
from __future__ import annotations
import logging
from datetime import datetime, tzinfo
from typing import Optional, Union

from feed_alerts.utils.time_utils import ensure_aware, resolve_zone
from .schema import ActiveHours, AlertScheduling

logger = logging.getLogger(__name__)

PRESET_ALWAYS = "always"
PRESET_BUSINESS_HOURS = "business_hours"
PRESET_WEEKDAYS = "weekdays"
PRESET_CUSTOM = "custom"


def parse_hhmm(value: str) -> Optional[int]:
    """Minutes since midnight for 'HH:MM', or None if malformed."""
    try:
        hours, minutes = str(value).strip().split(":")
        h, m = int(hours), int(minutes)
    except (ValueError, AttributeError):
        return None
    if not (0 <= h <= 23 and 0 <= m <= 59):
        return None
    return h * 60 + m


def _local_time(now: datetime, scheduling: AlertScheduling, default_tz: Optional[tzinfo]) -> datetime:
    if scheduling.timezone:
        zone = resolve_zone(scheduling.timezone)
        if zone is not None:
            return now.astimezone(zone)
        logger.warning(f"Unknown timezone {scheduling.timezone!r}, falling back to default")
    if default_tz is not None:
        return now.astimezone(default_tz)
    return now.astimezone()


def within_hours(minute_of_day: int, hours: ActiveHours) -> bool:
    """
    True if ``minute_of_day`` falls in [start, end). A window whose start is
    after its end wraps past midnight. Malformed bounds count as no window.
    """
    start = parse_hhmm(hours.start)
    end = parse_hhmm(hours.end)
    if start is None or end is None:
        logger.warning(f"Malformed active hours {hours.start!r}-{hours.end!r}, ignoring")
        return True
    if start <= end:
        return start <= minute_of_day < end
    return minute_of_day >= start or minute_of_day < end


def is_eligible(
    scheduling: Optional[AlertScheduling],
    now: datetime,
    default_tz: Optional[Union[tzinfo, str]] = None,
) -> bool:
    if scheduling is None:
        return True

    now = ensure_aware(now)
    if isinstance(default_tz, str):
        default_tz = resolve_zone(default_tz)

    if scheduling.snooze_until is not None and now < ensure_aware(scheduling.snooze_until):
        return False

    if not scheduling.active_days and scheduling.active_hours is None:
        return True

    local = _local_time(now, scheduling, default_tz)

    if scheduling.active_days:
        # isoweekday: Monday=1 ... Sunday=7 -> Sunday=0
        weekday = local.isoweekday() % 7
        if weekday not in scheduling.active_days:
            return False

    if scheduling.active_hours is not None:
        if not within_hours(local.hour * 60 + local.minute, scheduling.active_hours):
            return False

    return True


def schedule_preset(name: str) -> AlertScheduling:
    """Scheduling for one of the named presets; unknown names mean 'always'."""
    key = (name or "").strip().lower()
    if key == PRESET_BUSINESS_HOURS:
        return AlertScheduling(active_hours=ActiveHours("09:00", "17:00"))
    if key == PRESET_WEEKDAYS:
        return AlertScheduling(active_days=[1, 2, 3, 4, 5])
    return AlertScheduling()
