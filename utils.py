"""
utils.py
Dates in the business timezone, id parsing and JSON-safe documents.

All stored datetimes are naive wall-clock times in BUSINESS_TIMEZONE.
"""
import os
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Optional, Tuple, Union
from zoneinfo import ZoneInfo

from bson import ObjectId
from fastapi import HTTPException

DEFAULT_TIMEZONE = "Asia/Kolkata"

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")

RANGE_DAYS = {
    "1d": 1,
    "3d": 3,
    "5d": 5,
    "7d": 7,
    "2w": 14,
}
RANGE_MONTHS = {
    "1m": 1,
    "3m": 3,
}


def business_tz() -> ZoneInfo:
    try:
        return ZoneInfo(os.getenv("BUSINESS_TIMEZONE", DEFAULT_TIMEZONE))
    except Exception:
        return ZoneInfo("UTC")


def now() -> datetime:
    return datetime.now(business_tz()).replace(tzinfo=None)


def today() -> date:
    return now().date()


def to_local(dt: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive business time; naive values pass through."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(business_tz()).replace(tzinfo=None)


def as_datetime(value: Union[date, datetime, None]) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_local(value)
    return datetime.combine(value, time.min)


def day_start(d: Union[date, datetime]) -> datetime:
    if isinstance(d, datetime):
        d = d.date()
    return datetime.combine(d, time.min)


def day_end(d: Union[date, datetime]) -> datetime:
    if isinstance(d, datetime):
        d = d.date()
    return datetime.combine(d, time.max).replace(microsecond=999000)


def same_day(a: Optional[datetime], b: Optional[datetime]) -> bool:
    if a is None or b is None:
        return False
    return a.date() == b.date()


def parse_date_param(value: Optional[str], field: str = "date") -> Optional[date]:
    if not value:
        return None
    try:
        if "T" in value or " " in value.strip():
            return to_local(datetime.fromisoformat(value.strip().replace("Z", "+00:00"))).date()
        return date.fromisoformat(value.strip())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {field}, expected YYYY-MM-DD")


def date_window(start: Optional[str], end: Optional[str]) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Inclusive window from query strings; the end is extended to 23:59:59.999."""
    start_d = parse_date_param(start, "startDate")
    end_d = parse_date_param(end, "endDate")
    if start_d and end_d and end_d < start_d:
        raise HTTPException(status_code=400, detail="endDate must not be before startDate")
    return (day_start(start_d) if start_d else None, day_end(end_d) if end_d else None)


def subtract_months(d: date, months: int) -> date:
    y = d.year + (d.month - 1 - months) // 12
    m = (d.month - 1 - months) % 12 + 1
    next_month = date(y + 1, 1, 1) if m == 12 else date(y, m + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(y, m, min(d.day, last_day))


def range_window(range_code: str, at: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Dashboard window: start of day N days/months ago through the end of today."""
    current = at or now()
    if range_code in RANGE_DAYS:
        start = current.date() - timedelta(days=RANGE_DAYS[range_code])
    else:
        start = subtract_months(current.date(), RANGE_MONTHS.get(range_code, 1))
    return day_start(start), day_end(current)


def previous_window(start: datetime, end: datetime) -> Tuple[datetime, datetime]:
    """The immediately preceding window of equal duration, ending just before `start`."""
    duration = end - start
    return start - duration, start - timedelta(milliseconds=1)


def month_window(month: Optional[str]) -> Tuple[datetime, datetime]:
    """`YYYY-MM` to its first and last instant; defaults to the current month."""
    if month:
        try:
            first = datetime.strptime(month, "%Y-%m").date()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid month, expected YYYY-MM")
    else:
        first = today().replace(day=1)
    next_first = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return day_start(first), day_end(next_first - timedelta(days=1))


def objid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except Exception:
        raise HTTPException(status_code=400, detail="Invalid id")


def record_query(id_str: Union[str, int]) -> Dict[str, Any]:
    """Match a lead or user by numeric id or by 24-hex record id."""
    value = str(id_str).strip()
    if value.isdigit():
        return {"id": int(value)}
    if OBJECT_ID_RE.match(value):
        return {"_id": ObjectId(value)}
    raise HTTPException(status_code=400, detail="Invalid id")


def serialize(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(v) for v in value]
    return value
