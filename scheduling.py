"""
Automatic open/close decisions from a facility's weekly business hours.

All facilities share one civil timezone (FACILITY_TIMEZONE), whatever their
location. Transitions fire only in the exact minute that matches an entry's
open or close time, so the caller must evaluate at least once per minute;
a skipped minute is not caught up until the same boundary next week.
Schedules whose close time is earlier than the open time (past midnight)
are not supported.
"""
import logging
import os
from datetime import datetime, time
from typing import Iterable, Optional, Tuple

import pytz

from schemas import BusinessHour, FacilityStatus

logger = logging.getLogger(__name__)

FACILITY_TIMEZONE = os.getenv("FACILITY_TIMEZONE", "Africa/Lagos")


def civil_now(now: datetime, tz_str: Optional[str] = None) -> Tuple[str, str]:
    """Return (weekday name, "HH:MM") for `now` in the facility timezone."""
    tz = pytz.timezone(tz_str or FACILITY_TIMEZONE)
    now_utc = pytz.UTC.localize(now) if now.tzinfo is None else now.astimezone(pytz.UTC)
    local = now_utc.astimezone(tz)
    return local.strftime("%A"), local.strftime("%H:%M")


def _normalize_hhmm(value: str) -> str:
    return datetime.strptime(value.strip(), "%H:%M").strftime("%H:%M")


def entry_for_day(schedule: Iterable[BusinessHour], day: str) -> Optional[BusinessHour]:
    for entry in schedule:
        if entry.day == day:
            return entry
    return None


def evaluate(schedule: Iterable[BusinessHour], now: datetime,
             tz_str: Optional[str] = None) -> Optional[FacilityStatus]:
    """Desired status at `now`, or None when the schedule has no opinion."""
    day, hhmm = civil_now(now, tz_str)
    entry = entry_for_day(schedule, day)
    if entry is None or not entry.enabled:
        return None

    try:
        open_t = _normalize_hhmm(entry.open)
        close_t = _normalize_hhmm(entry.close)
    except (ValueError, AttributeError):
        logger.warning("Ignoring malformed business hours for %s: open=%r close=%r",
                       day, entry.open, entry.close)
        return None

    if hhmm == open_t:
        return FacilityStatus.OPEN
    if hhmm == close_t:
        return FacilityStatus.CLOSED
    return None


def is_within_hours(schedule: Iterable[BusinessHour], now: datetime,
                    tz_str: Optional[str] = None) -> bool:
    """Whether `now` falls inside today's enabled window. Display only."""
    day, hhmm = civil_now(now, tz_str)
    entry = entry_for_day(schedule, day)
    if entry is None or not entry.enabled:
        return False
    try:
        open_t = datetime.strptime(entry.open, "%H:%M").time()
        close_t = datetime.strptime(entry.close, "%H:%M").time()
    except (ValueError, AttributeError):
        return False
    current = time(*[int(x) for x in hhmm.split(":")])
    return open_t <= current < close_t
