"""
Lead and wash lifecycle rules.

Leads only move New -> Converted. Wash entries move
pending -> in-progress -> completed | notcompleted.
"""
from datetime import datetime
from typing import Optional

from bson import ObjectId

from schemas import WashEntry

PENDING = "pending"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"
NOT_COMPLETED = "notcompleted"

TERMINAL = {COMPLETED, NOT_COMPLETED}

LEAD_NEW = "New"
LEAD_CONVERTED = "Converted"


class WashStateError(ValueError):
    pass


def is_converted_wash(wash: dict) -> bool:
    """A wash that was carried out, paid or not."""
    status = wash.get("washStatus", wash.get("status"))
    return status == COMPLETED


def is_revenue_eligible(wash: dict) -> bool:
    """A wash that counts toward revenue: completed and paid."""
    return is_converted_wash(wash) and wash.get("is_amountPaid", wash.get("isPaid")) is True


def mark_converted(lead: dict) -> None:
    lead["status"] = LEAD_CONVERTED


def compute_duration(start: Optional[datetime], end: Optional[datetime], explicit: Optional[int] = None) -> int:
    """Whole minutes between start and end, else the explicit value, else 0."""
    if start and end:
        return max(0, int((end - start).total_seconds() // 60))
    if explicit:
        return max(0, int(explicit))
    return 0


def new_wash_entry(
    wash_type: str,
    amount: float,
    date: datetime,
    washer: Optional[ObjectId] = None,
    status: str = COMPLETED,
    paid: bool = False,
    feedback: Optional[str] = None,
    source: str = "adhoc",
    scheduled_wash_id: Optional[ObjectId] = None,
    is_interior: bool = False,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    duration: Optional[int] = None,
) -> dict:
    entry = WashEntry(
        washType=wash_type,
        amount=amount or 0,
        date=date,
        feedback=feedback,
        is_amountPaid=paid,
        washStatus=status,
        startTime=start_time,
        endTime=end_time,
        isInterior=is_interior,
        source=source,
    ).model_dump()
    entry["_id"] = ObjectId()
    entry["washer"] = washer
    entry["scheduledWashId"] = scheduled_wash_id
    entry["duration"] = compute_duration(start_time, end_time, duration)
    entry["createdAt"] = date
    entry["updatedAt"] = date
    return entry


def apply_status(entry: dict, status: str, at: datetime, explicit_duration: Optional[int] = None) -> None:
    """Move a wash entry to `status`, stamping start/end times and duration."""
    current = entry.get("washStatus", COMPLETED)
    if status == current:
        if explicit_duration is not None:
            entry["duration"] = compute_duration(entry.get("startTime"), entry.get("endTime"), explicit_duration)
        return
    if current in TERMINAL and status not in TERMINAL:
        raise WashStateError(f"Cannot move a {current} wash back to {status}")

    if status == IN_PROGRESS:
        entry["startTime"] = entry.get("startTime") or at
    elif status == COMPLETED:
        entry["endTime"] = entry.get("endTime") or at
    entry["washStatus"] = status
    entry["duration"] = compute_duration(entry.get("startTime"), entry.get("endTime"), explicit_duration or entry.get("duration"))
    entry["updatedAt"] = at


def find_entry(lead: dict, entry_id) -> Optional[dict]:
    for entry in lead.get("washHistory") or []:
        if str(entry.get("_id")) == str(entry_id):
            return entry
    return None
