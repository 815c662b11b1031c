"""
Daily staff register and monthly performance figures.

One record per staff member per day, keyed "<staff_id>_<YYYY-MM-DD>" with
the date taken in the facility timezone.
"""
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import pytz
from pydantic import BaseModel

from scheduling import FACILITY_TIMEZONE
from schemas import AttendanceRecord, BreakPeriod, Shift, Staff


class AttendanceError(Exception):
    pass


class StaffMonthStats(BaseModel):
    staff_id: str
    username: str
    position: str
    expected_hours: float
    actual_hours: float
    penalty_minutes: int
    rating: str


def _local(now: datetime, tz_str: Optional[str] = None) -> datetime:
    return now.astimezone(pytz.timezone(tz_str or FACILITY_TIMEZONE))


def local_date(now: datetime, tz_str: Optional[str] = None) -> str:
    return _local(now, tz_str).strftime("%Y-%m-%d")


def record_id(staff_id: str, day: str) -> str:
    return f"{staff_id}_{day}"


def month_bounds(month: str) -> Tuple[str, str]:
    """"YYYY-MM" -> inclusive date-string range covering the month."""
    datetime.strptime(month, "%Y-%m")
    return f"{month}-01", f"{month}-31"


def sign_in(facility_id: str, staff: Staff, now: datetime,
            existing: Optional[AttendanceRecord] = None, shift_id: Optional[str] = None,
            tz_str: Optional[str] = None) -> AttendanceRecord:
    if existing is not None and existing.sign_in is not None and existing.status != "Absent":
        raise AttendanceError(f"{staff.username} already signed in today")
    day = local_date(now, tz_str)
    return AttendanceRecord(
        id=record_id(staff.id, day),
        facility_id=facility_id,
        staff_id=staff.id,
        staff_name=staff.username,
        shift_id=shift_id or (staff.eligible_shifts[0] if staff.eligible_shifts else None),
        date=day,
        sign_in=now,
        status="Present",
    )


def sign_out(record: AttendanceRecord, now: datetime) -> AttendanceRecord:
    if record.status == "On Break":
        raise AttendanceError("End the break before signing out")
    if record.status != "Present" or record.sign_in is None:
        raise AttendanceError("Not signed in")
    return record.model_copy(update={"sign_out": now, "status": "Sign Out"})


def start_break(record: AttendanceRecord, now: datetime) -> AttendanceRecord:
    if record.status != "Present":
        raise AttendanceError("Only a present staff member can go on break")
    breaks = record.breaks + [BreakPeriod(out_at=now)]
    return record.model_copy(update={"breaks": breaks, "status": "On Break"})


def end_break(record: AttendanceRecord, now: datetime, approved: bool = False) -> AttendanceRecord:
    if record.status != "On Break" or not record.breaks:
        raise AttendanceError("Not on break")
    breaks = list(record.breaks)
    breaks[-1] = breaks[-1].model_copy(update={"back_at": now, "approved": approved})
    return record.model_copy(update={"breaks": breaks, "status": "Present"})


def mark_absent(facility_id: str, staff: Staff, now: datetime,
                tz_str: Optional[str] = None) -> AttendanceRecord:
    day = local_date(now, tz_str)
    return AttendanceRecord(
        id=record_id(staff.id, day),
        facility_id=facility_id,
        staff_id=staff.id,
        staff_name=staff.username,
        date=day,
        status="Absent",
    )


def set_overtime(record: AttendanceRecord, minutes: int) -> AttendanceRecord:
    if minutes < 0:
        raise AttendanceError("Overtime cannot be negative")
    return record.model_copy(update={"overtime_minutes": minutes})


def _minutes(hhmm: str) -> int:
    h, m = [int(x) for x in hhmm.split(":")]
    return h * 60 + m


def shift_duration_minutes(start: str, end: str) -> int:
    duration = _minutes(end) - _minutes(start)
    if duration < 0:
        duration += 24 * 60  # overnight
    return duration


def on_duty(records: Iterable[AttendanceRecord], staff: Iterable[Staff],
            term: str = "") -> List[Tuple[AttendanceRecord, Staff]]:
    profiles = {s.id: s for s in staff}
    term = term.strip().lower()
    out = []
    for rec in records:
        if rec.sign_in is None or rec.sign_out is not None or rec.status == "Absent":
            continue
        profile = profiles.get(rec.staff_id)
        if profile is None:
            continue
        if term and term not in profile.username.lower() and term not in profile.position.lower():
            continue
        out.append((rec, profile))
    out.sort(key=lambda pair: (pair[1].position.lower(), pair[1].username.lower()))
    return out


def _unapproved_break_minutes(record: AttendanceRecord) -> float:
    total = 0.0
    for b in record.breaks:
        if not b.approved and b.back_at is not None:
            total += (b.back_at - b.out_at).total_seconds() / 60
    return total


def monthly_stats(staff: Iterable[Staff], shifts: Iterable[Shift],
                  records: Iterable[AttendanceRecord],
                  tz_str: Optional[str] = None) -> List[StaffMonthStats]:
    """Expected vs actual hours and penalty minutes per eligible staff member.

    A day's expected time is the average duration of the staff member's
    eligible shifts. An absence costs the whole expected day; a late sign-in
    (against the first eligible shift) and unapproved breaks cost their
    minutes.
    """
    shift_map: Dict[str, Shift] = {s.id: s for s in shifts}
    records = list(records)
    out = []
    for member in staff:
        durations = [shift_duration_minutes(shift_map[sid].start, shift_map[sid].end)
                     for sid in member.eligible_shifts if sid in shift_map]
        if not durations:
            continue
        day_expected = sum(durations) / len(durations)
        first_shift = shift_map.get(member.eligible_shifts[0])

        expected = actual = penalty = 0.0
        for rec in (r for r in records if r.staff_id == member.id):
            expected += day_expected
            if rec.status == "Absent":
                penalty += day_expected
            elif rec.sign_in is not None and rec.sign_out is not None:
                worked = (rec.sign_out - rec.sign_in).total_seconds() / 60
                unapproved = _unapproved_break_minutes(rec)
                actual += worked - unapproved + rec.overtime_minutes
                if first_shift is not None:
                    local_in = _local(rec.sign_in, tz_str)
                    start = local_in.replace(hour=_minutes(first_shift.start) // 60,
                                             minute=_minutes(first_shift.start) % 60,
                                             second=0, microsecond=0)
                    if local_in > start:
                        penalty += (local_in - start) / timedelta(minutes=1)
                penalty += unapproved

        expected_hours = round(expected / 60, 1)
        actual_hours = round(actual / 60, 1)
        out.append(StaffMonthStats(
            staff_id=member.id,
            username=member.username,
            position=member.position,
            expected_hours=expected_hours,
            actual_hours=actual_hours,
            penalty_minutes=round(penalty),
            rating="Excellent" if actual_hours >= expected_hours else "Deficit",
        ))
    return out
