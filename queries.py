"""
Lookups shared by the route modules.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from fastapi import HTTPException

import revenue
from database import get_collection
from utils import OBJECT_ID_RE, record_query


def find_lead_or_404(lead_id: str) -> dict:
    lead = get_collection("lead").find_one(record_query(lead_id))
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


def find_user_or_404(user_id: str, role: Optional[str] = None, label: str = "Washer") -> dict:
    query = record_query(user_id)
    if role:
        query["role"] = role
    user = get_collection("user").find_one(query)
    if not user:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return user


def resolve_washer(washer_id: Optional[Any]) -> Optional[ObjectId]:
    """Washer reference from a numeric id or a record id; None passes through."""
    if washer_id in (None, ""):
        return None
    value = str(washer_id)
    if not value.isdigit() and not OBJECT_ID_RE.match(value):
        raise HTTPException(status_code=400, detail="Invalid washer id")
    return find_user_or_404(value, role="washer")["_id"]


def save_lead(lead: dict, at: datetime) -> None:
    """Write the whole lead back; concurrent writers race, last write wins."""
    lead["updatedAt"] = at
    get_collection("lead").replace_one({"_id": lead["_id"]}, lead)


def washer_names() -> Dict[str, str]:
    users = get_collection("user").find({}, {"name": 1})
    return {str(u["_id"]): u.get("name") for u in users}


def date_query(field: str, start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    if start is None and end is None:
        return {}
    window: Dict[str, Any] = {}
    if start is not None:
        window["$gte"] = start
    if end is not None:
        window["$lte"] = end
    return {field: window}


def load_leads(query: Optional[Dict[str, Any]] = None) -> List[dict]:
    return list(get_collection("lead").find(query or {}))


def revenue_records(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    wash_type: Optional[str] = None,
    area: Optional[str] = None,
    customer_type: Optional[str] = None,
) -> List[dict]:
    leads = load_leads({"$or": [{"status": "Converted"}, {"monthlySubscription": {"$ne": None}}]})
    return revenue.collect_washes(
        leads, start, end,
        wash_type=wash_type, area=area, customer_type=customer_type,
        washer_names=washer_names(),
    )


def expenses_between(start: Optional[datetime], end: Optional[datetime]) -> List[dict]:
    return list(get_collection("expense").find(date_query("date", start, end)).sort("date", -1))
