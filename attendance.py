"""
Washer attendance: one entry per washer per calendar day.
"""
from datetime import datetime
from typing import List, Optional

from bson import ObjectId

from schemas import Attendance

INCOMPLETE = "incomplete"
PRESENT = "present"


class AttendanceError(ValueError):
    pass


def entry_for_day(attendance: List[dict], at: datetime) -> Optional[dict]:
    for entry in attendance:
        if entry.get("date") and entry["date"].date() == at.date():
            return entry
    return None


def hours_between(time_in: datetime, time_out: datetime) -> float:
    return max(0.0, round((time_out - time_in).total_seconds() / 3600, 2))


def clock_in(attendance: List[dict], at: datetime) -> dict:
    entry = entry_for_day(attendance, at)
    if entry and entry.get("timeIn"):
        raise AttendanceError("Time-in already marked for today")
    if entry:
        entry["timeIn"] = at
        entry["status"] = INCOMPLETE
        return entry
    entry = Attendance(date=at, timeIn=at, status=INCOMPLETE).model_dump()
    entry["_id"] = ObjectId()
    attendance.append(entry)
    return entry


def clock_out(attendance: List[dict], at: datetime) -> dict:
    entry = entry_for_day(attendance, at)
    if not entry or not entry.get("timeIn"):
        raise AttendanceError("Must mark time-in before marking time-out")
    if entry.get("timeOut"):
        raise AttendanceError("Time-out already marked for today")
    if at < entry["timeIn"]:
        raise AttendanceError("Time-out cannot be before time-in")
    entry["timeOut"] = at
    entry["duration"] = hours_between(entry["timeIn"], at)
    entry["status"] = PRESENT
    return entry


def in_period(attendance: List[dict], start: Optional[datetime], end: Optional[datetime]) -> List[dict]:
    rows = []
    for entry in attendance:
        when = entry.get("date")
        if when is None:
            continue
        if start is not None and when < start:
            continue
        if end is not None and when > end:
            continue
        rows.append(entry)
    return rows


def summarize(attendance: List[dict], start: Optional[datetime] = None, end: Optional[datetime] = None) -> dict:
    """Counts over recorded days; the percentage divides by recorded days, not calendar days."""
    rows = in_period(attendance, start, end)
    total = len(rows)
    present = sum(1 for a in rows if a.get("timeIn") and a.get("timeOut"))
    return {
        "totalDays": total,
        "presentDays": present,
        "incompleteDays": sum(1 for a in rows if a.get("timeIn") and not a.get("timeOut")),
        "totalHours": round(sum(a.get("duration") or 0 for a in rows), 2),
        "attendancePercentage": round(present / total * 100, 1) if total else 0,
    }
