import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, Field
from pymongo.errors import DuplicateKeyError

import lifecycle
import revenue
import subscriptions
from database import get_collection, next_sequence
from queries import (
    date_query,
    find_lead_or_404,
    resolve_washer,
    save_lead,
    washer_names,
)
from schemas import Lead, LeadSource, LeadType, Location, OneTimeWash, Reminder, WashStatus
from security import ADMINS, STAFF, VIEWERS, AuthUser, ensure_assigned_or_roles, require_roles
from utils import as_datetime, date_window, day_end, day_start, now, record_query, serialize, today

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/leads", tags=["leads"])


# ---------- Helpers ----------

def serialize_lead(lead: dict, names: Optional[Dict[str, str]] = None) -> dict:
    names = names if names is not None else washer_names()
    data = serialize(lead)
    washer = data.get("assignedWasher")
    data["assignedWasher"] = {"_id": washer, "name": names.get(washer)} if washer else None
    for entry in data.get("washHistory") or []:
        entry["washerName"] = names.get(entry.get("washer")) if entry.get("washer") else None
    subscription = data.get("monthlySubscription")
    if subscription:
        for slot in subscription.get("scheduledWashes") or []:
            slot["washerName"] = names.get(slot.get("washer")) if slot.get("washer") else None
    return data


def _domain_error(exc: Exception) -> HTTPException:
    if isinstance(exc, subscriptions.ScheduledWashNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def upcoming_washes(leads: List[dict], start: datetime, end: datetime, names: Dict[str, str]) -> List[dict]:
    """Calendar of one-time, subscription and pending ad hoc washes, one per customer per day."""
    items = []

    def add(kind, lead, wash_type, when, washer, status):
        if when is None or when < start or when > end:
            return
        washer = washer or lead.get("assignedWasher")
        items.append({
            "_id": f"{kind}_{lead['_id']}",
            "customerId": str(lead["_id"]),
            "leadId": lead.get("id"),
            "customerName": lead.get("customerName"),
            "phone": lead.get("phone"),
            "area": lead.get("area"),
            "carModel": lead.get("carModel"),
            "washType": wash_type,
            "scheduledDate": when,
            "washer": {"_id": str(washer), "name": names.get(str(washer))} if washer else None,
            "status": "completed" if status == "completed" else "pending",
        })

    for lead in leads:
        one_time = lead.get("oneTimeWash")
        if one_time:
            when = one_time.get("scheduledDate") or lead.get("createdAt")
            add("onetime", lead, one_time.get("washType") or "Basic", when, one_time.get("washer"), one_time.get("status"))

        subscription = lead.get("monthlySubscription")
        if subscription:
            wash_type = subscriptions.wash_type_of(subscription)
            for slot in subscription.get("scheduledWashes") or []:
                add(f"monthly_{slot.get('washNumber')}", lead, wash_type, slot.get("scheduledDate"), slot.get("washer"), slot.get("status"))

        for entry in lead.get("washHistory") or []:
            if entry.get("source") in ("subscription", "onetime"):
                continue
            add(f"history_{entry.get('_id')}", lead, entry.get("washType") or "Basic", entry.get("date"), entry.get("washer"), entry.get("washStatus"))

    unique: Dict[Any, dict] = {}
    for item in items:
        key = (item["customerId"], item["scheduledDate"].date())
        existing = unique.get(key)
        if existing is None or (item["status"] == "completed" and existing["status"] == "pending"):
            unique[key] = item
    return sorted(unique.values(), key=lambda w: w["scheduledDate"])


# ---------- Requests ----------

class LeadCreateRequest(BaseModel):
    customerName: str = Field(validation_alias=AliasChoices("customerName", "name"))
    phone: str
    area: str
    leadType: LeadType
    leadSource: LeadSource
    carModel: Optional[str] = None
    notes: Optional[str] = None
    assignedWasher: Optional[str] = None
    coordinates: Optional[List[float]] = None
    reminder: Optional[Reminder] = None


class LeadUpdateRequest(BaseModel):
    customerName: Optional[str] = Field(None, validation_alias=AliasChoices("customerName", "name"))
    phone: Optional[str] = None
    area: Optional[str] = None
    leadType: Optional[LeadType] = None
    leadSource: Optional[LeadSource] = None
    carModel: Optional[str] = None
    notes: Optional[str] = None
    assignedWasher: Optional[str] = None
    coordinates: Optional[List[float]] = None
    reminder: Optional[Reminder] = None


class WashHistoryRequest(BaseModel):
    washType: str
    washerId: Optional[str] = None
    amount: float = Field(0, ge=0)
    date: Optional[datetime] = None
    feedback: Optional[str] = None
    is_amountPaid: bool = Field(False, validation_alias=AliasChoices("is_amountPaid", "amountPaid"))
    washStatus: WashStatus = "completed"
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)
    isInterior: bool = False


class WashHistoryUpdateRequest(BaseModel):
    washType: Optional[str] = None
    washerId: Optional[str] = None
    amount: Optional[float] = Field(None, ge=0)
    date: Optional[datetime] = None
    feedback: Optional[str] = None
    is_amountPaid: Optional[bool] = Field(None, validation_alias=AliasChoices("is_amountPaid", "amountPaid"))
    washStatus: Optional[WashStatus] = None
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)


class AssignRequest(BaseModel):
    washerId: str


class AssignOneTimeRequest(BaseModel):
    washerId: str
    washType: str = "Basic"
    amount: float = Field(0, ge=0)
    scheduledDate: Optional[datetime] = None
    is_amountPaid: bool = False


class CompleteOneTimeRequest(BaseModel):
    is_amountPaid: Optional[bool] = None
    feedback: Optional[str] = None
    date: Optional[datetime] = None
    duration: Optional[int] = Field(None, ge=0)


class SubscriptionRequest(BaseModel):
    packageType: Optional[str] = None
    customPlanName: Optional[str] = None
    totalWashes: Optional[int] = Field(None, ge=1)
    price: Optional[float] = Field(None, ge=0)
    totalInteriorWashes: Optional[int] = Field(None, ge=0)
    dates: List[Union[datetime, date]] = Field(default_factory=list, validation_alias=AliasChoices("dates", "scheduledDates"))
    is_amountPaid: bool = Field(False, validation_alias=AliasChoices("is_amountPaid", "paymentStatus"))
    washerId: Optional[str] = None
    autoGenerate: bool = True


class CompleteScheduledWashRequest(BaseModel):
    is_amountPaid: Optional[bool] = None
    feedback: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)
    washerId: Optional[str] = None
    isInterior: bool = False
    completedDate: Optional[datetime] = None


# ---------- Leads ----------

@router.get("")
def list_leads(
    searchQuery: Optional[str] = None,
    leadType: Optional[str] = None,
    leadSource: Optional[str] = None,
    status: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    query: Dict[str, Any] = {}
    if searchQuery:
        query["$or"] = [
            {field: {"$regex": searchQuery, "$options": "i"}}
            for field in ("customerName", "phone", "area")
        ]
    if leadType:
        query["leadType"] = leadType
    if leadSource:
        query["leadSource"] = leadSource
    if status:
        query["status"] = status
    query.update(date_query("createdAt", *date_window(startDate, endDate)))

    names = washer_names()
    docs = get_collection("lead").find(query).sort("id", -1)
    return [serialize_lead(d, names) for d in docs]


@router.post("", status_code=201)
def create_lead(req: LeadCreateRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    leads = get_collection("lead")
    if leads.find_one({"phone": req.phone}):
        raise HTTPException(status_code=400, detail="A lead with this phone already exists")

    lead = Lead(
        id=next_sequence("leadId"),
        customerName=req.customerName,
        phone=req.phone,
        area=req.area,
        carModel=req.carModel,
        leadType=req.leadType,
        leadSource=req.leadSource,
        notes=req.notes,
        reminder=req.reminder,
        location=Location(coordinates=req.coordinates) if req.coordinates else Location(),
    ).model_dump()
    lead["assignedWasher"] = resolve_washer(req.assignedWasher)
    lead["createdAt"] = lead["updatedAt"] = now()
    try:
        lead["_id"] = leads.insert_one(lead).inserted_id
    except DuplicateKeyError:
        raise HTTPException(status_code=400, detail="A lead with this phone already exists")
    return serialize_lead(lead)


@router.get("/stats/overview")
def leads_overview(
    leadType: Optional[str] = None,
    leadSource: Optional[str] = None,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    query: Dict[str, Any] = {}
    if leadType:
        query["leadType"] = leadType
    if leadSource:
        query["leadSource"] = leadSource
    query.update(date_query("createdAt", *date_window(startDate, endDate)))

    leads = list(get_collection("lead").find(query))
    converted = [l for l in leads if l.get("status") == lifecycle.LEAD_CONVERTED]
    current = now()
    start_of_day = day_start(current)

    records = revenue.collect_washes(converted)
    area_distribution: Dict[str, int] = {}
    type_distribution: Dict[str, int] = {}
    for lead in converted:
        area_distribution[lead.get("area")] = area_distribution.get(lead.get("area"), 0) + 1
        type_distribution[lead.get("leadType")] = type_distribution.get(lead.get("leadType"), 0) + 1

    return {
        "totalLeads": len(leads),
        "newToday": sum(1 for l in leads if l.get("createdAt") and l["createdAt"] >= start_of_day),
        "pendingFollowUps": sum(
            1 for l in leads
            if l.get("status") == lifecycle.LEAD_NEW
            and (l.get("reminder") or {}).get("date") is not None
            and l["reminder"]["date"] <= current
        ),
        "convertedLeads": len(converted),
        "totalRevenue": revenue.total_revenue(records),
        "totalWashes": sum(1 for r in records if lifecycle.is_converted_wash(r)),
        "areaDistribution": area_distribution,
        "typeDistribution": type_distribution,
    }


@router.get("/upcoming-washes")
def list_upcoming_washes(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*STAFF)),
):
    start, end = date_window(startDate, endDate)
    start = start or day_start(today())
    end = end or day_end(today() + timedelta(days=7))
    washes = upcoming_washes(list(get_collection("lead").find({})), start, end, washer_names())
    if user.role == "washer":
        washes = [w for w in washes if w["washer"] and w["washer"]["_id"] == user.uid]
    return serialize(washes)


@router.get("/{lead_id}")
def get_lead(lead_id: str, user: AuthUser = Depends(require_roles(*VIEWERS))):
    return serialize_lead(find_lead_or_404(lead_id))


@router.put("/{lead_id}")
def update_lead(lead_id: str, req: LeadUpdateRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    lead = find_lead_or_404(lead_id)
    updates = req.model_dump(exclude_unset=True)

    if "phone" in updates and updates["phone"] != lead.get("phone"):
        if get_collection("lead").find_one({"phone": updates["phone"], "_id": {"$ne": lead["_id"]}}):
            raise HTTPException(status_code=400, detail="A lead with this phone already exists")
    if "assignedWasher" in updates:
        updates["assignedWasher"] = resolve_washer(updates["assignedWasher"])
    if "coordinates" in updates:
        coordinates = updates.pop("coordinates")
        if coordinates:
            updates["location"] = Location(coordinates=coordinates).model_dump()
    if "reminder" in updates and updates["reminder"] is not None:
        updates["reminder"] = {k: as_datetime(v) if k == "date" else v for k, v in updates["reminder"].items()}

    lead.update({k: v for k, v in updates.items() if v is not None or k == "assignedWasher"})
    save_lead(lead, now())
    return serialize_lead(lead)


@router.delete("/{lead_id}")
def delete_lead(lead_id: str, user: AuthUser = Depends(require_roles(*ADMINS))):
    res = get_collection("lead").delete_one(record_query(lead_id))
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {"message": "Lead deleted successfully"}


# ---------- Washer assignment ----------

@router.put("/{lead_id}/assign")
def assign_washer(lead_id: str, req: AssignRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    washer = resolve_washer(req.washerId)
    lead = find_lead_or_404(lead_id)
    lead["assignedWasher"] = washer
    save_lead(lead, now())
    logger.info("Assigned washer %s to lead %s", washer, lead.get("id"))
    return serialize_lead(lead)


@router.put("/{lead_id}/assign-onetime")
def assign_onetime(lead_id: str, req: AssignOneTimeRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    washer = resolve_washer(req.washerId)
    lead = find_lead_or_404(lead_id)
    if (lead.get("oneTimeWash") or {}).get("status") == "completed":
        raise HTTPException(status_code=400, detail="One-time wash is already completed")

    current = now()
    one_time = OneTimeWash(
        washType=req.washType,
        amount=req.amount,
        scheduledDate=as_datetime(req.scheduledDate) or current,
        is_amountPaid=req.is_amountPaid,
    ).model_dump()
    one_time["washer"] = washer
    lead["oneTimeWash"] = one_time
    lead["assignedWasher"] = washer
    save_lead(lead, current)
    return serialize_lead(lead)


@router.put("/{lead_id}/onetime-wash/complete")
def complete_onetime(lead_id: str, req: CompleteOneTimeRequest, user: AuthUser = Depends(require_roles(*STAFF))):
    lead = find_lead_or_404(lead_id)
    one_time = lead.get("oneTimeWash")
    if not one_time:
        raise HTTPException(status_code=404, detail="One-time wash not found")
    ensure_assigned_or_roles(user, [one_time.get("washer"), lead.get("assignedWasher")])
    if one_time.get("status") == "completed":
        raise HTTPException(status_code=400, detail="One-time wash is already completed")

    current = now()
    done_at = as_datetime(req.date) or current
    paid = one_time.get("is_amountPaid", False) if req.is_amountPaid is None else req.is_amountPaid
    entry = lifecycle.new_wash_entry(
        wash_type=one_time.get("washType") or "Basic",
        amount=one_time.get("amount") or 0,
        date=done_at,
        washer=one_time.get("washer") or lead.get("assignedWasher"),
        status=lifecycle.COMPLETED,
        paid=paid,
        feedback=req.feedback,
        source="onetime",
        end_time=done_at,
        duration=req.duration,
    )
    lead.setdefault("washHistory", []).append(entry)
    one_time.update({
        "status": "completed",
        "completedDate": done_at,
        "is_amountPaid": paid,
        "washHistoryId": entry["_id"],
    })
    lifecycle.mark_converted(lead)
    save_lead(lead, current)
    return serialize_lead(lead)


# ---------- Wash history ----------

@router.get("/{lead_id}/wash-history")
def get_wash_history(lead_id: str, user: AuthUser = Depends(require_roles(*VIEWERS))):
    return serialize_lead(find_lead_or_404(lead_id))["washHistory"]


@router.post("/{lead_id}/wash-history", status_code=201)
def add_wash_history(lead_id: str, req: WashHistoryRequest, user: AuthUser = Depends(require_roles(*STAFF))):
    lead = find_lead_or_404(lead_id)
    ensure_assigned_or_roles(user, [lead.get("assignedWasher")])
    washer = resolve_washer(req.washerId) or lead.get("assignedWasher")
    current = now()
    start = as_datetime(req.startTime)
    end = as_datetime(req.endTime)
    if req.washStatus == lifecycle.IN_PROGRESS:
        start = start or current
    if req.washStatus == lifecycle.COMPLETED and start:
        end = end or current

    entry = lifecycle.new_wash_entry(
        wash_type=req.washType,
        amount=req.amount,
        date=as_datetime(req.date) or current,
        washer=washer,
        status=req.washStatus,
        paid=req.is_amountPaid,
        feedback=req.feedback,
        is_interior=req.isInterior,
        start_time=start,
        end_time=end,
        duration=req.duration,
    )
    lead.setdefault("washHistory", []).append(entry)
    lifecycle.mark_converted(lead)
    save_lead(lead, current)
    return serialize_lead(lead)["washHistory"]


@router.put("/{lead_id}/wash-history/{entry_id}")
def update_wash_history(lead_id: str, entry_id: str, req: WashHistoryUpdateRequest, user: AuthUser = Depends(require_roles(*STAFF))):
    lead = find_lead_or_404(lead_id)
    entry = lifecycle.find_entry(lead, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Wash history entry not found")
    ensure_assigned_or_roles(user, [entry.get("washer"), lead.get("assignedWasher")])

    current = now()
    washer = resolve_washer(req.washerId)

    if (
        entry.get("source") == "subscription"
        and req.washStatus == lifecycle.COMPLETED
        and entry.get("washStatus") != lifecycle.COMPLETED
        and entry.get("scheduledWashId") is not None
    ):
        # the subscription slot is the record of truth; completing it updates this mirror
        try:
            subscriptions.complete_scheduled_wash(
                lead, entry["scheduledWashId"], current,
                paid=req.is_amountPaid, feedback=req.feedback, duration=req.duration,
                washer=washer, completed_date=as_datetime(req.date),
            )
        except (subscriptions.SubscriptionError, subscriptions.ScheduledWashNotFound) as exc:
            raise _domain_error(exc)
        save_lead(lead, current)
        return serialize_lead(lead)["washHistory"]

    slot = None
    if entry.get("source") == "subscription" and entry.get("scheduledWashId") is not None:
        slot = subscriptions.find_slot(lead, entry["scheduledWashId"])
    if slot is not None and (req.is_amountPaid is not None or req.amount is not None):
        # payment lives on the slot; record_payment copies it back onto this entry
        subscriptions.record_payment(lead, slot, current, paid=req.is_amountPaid, amount=req.amount)

    if req.washType:
        entry["washType"] = req.washType
    if req.amount is not None:
        entry["amount"] = req.amount
    if req.date:
        entry["date"] = as_datetime(req.date)
    if washer is not None:
        entry["washer"] = washer
    if req.feedback is not None:
        entry["feedback"] = req.feedback
    if req.is_amountPaid is not None:
        entry["is_amountPaid"] = req.is_amountPaid
    if req.startTime:
        entry["startTime"] = as_datetime(req.startTime)
    if req.endTime:
        entry["endTime"] = as_datetime(req.endTime)
    try:
        lifecycle.apply_status(entry, req.washStatus or entry.get("washStatus", lifecycle.COMPLETED), current, req.duration)
    except lifecycle.WashStateError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    entry["updatedAt"] = current

    save_lead(lead, current)
    return serialize_lead(lead)["washHistory"]


# ---------- Monthly subscriptions ----------

def _subscribe(lead: dict, req: SubscriptionRequest) -> dict:
    current = now()
    washer = resolve_washer(req.washerId)
    try:
        package = subscriptions.resolve_package(
            req.packageType, req.customPlanName, req.totalWashes, req.price, req.totalInteriorWashes,
        )
        subscriptions.create_subscription(lead, package, req.dates, req.is_amountPaid, current, washer)
    except subscriptions.SubscriptionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    save_lead(lead, current)
    logger.info("Created %s subscription for lead %s", package["packageType"], lead.get("id"))

    if req.autoGenerate:
        try:
            if subscriptions.auto_generate_slots(lead, current, washer):
                save_lead(lead, current)
        except Exception:
            logger.exception("Auto-generating wash slots failed for lead %s", lead.get("id"))
    return serialize_lead(lead)


@router.post("/{lead_id}/convert-to-monthly")
def convert_to_monthly(lead_id: str, req: SubscriptionRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    lead = find_lead_or_404(lead_id)
    if lead.get("leadType") == "Monthly" and (lead.get("monthlySubscription") or {}).get("isActive"):
        raise HTTPException(status_code=400, detail="Lead is already on an active monthly plan")
    return _subscribe(lead, req)


@router.post("/{lead_id}/monthly-subscription", status_code=201)
def create_monthly_subscription(lead_id: str, req: SubscriptionRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    return _subscribe(find_lead_or_404(lead_id), req)


@router.get("/{lead_id}/monthly-subscription")
def get_monthly_subscription(lead_id: str, user: AuthUser = Depends(require_roles(*STAFF))):
    doc = find_lead_or_404(lead_id)
    if not doc.get("monthlySubscription"):
        raise HTTPException(status_code=404, detail="Monthly subscription not found")
    slot_washers = [s.get("washer") for s in doc["monthlySubscription"].get("scheduledWashes") or []]
    ensure_assigned_or_roles(user, [doc.get("assignedWasher")] + slot_washers)
    lead = serialize_lead(doc)
    subscription = lead["monthlySubscription"]
    subscription["remainingWashes"] = subscription["totalWashes"] - subscription.get("completedWashes", 0)
    subscription["remainingInteriorWashes"] = subscription.get("totalInteriorWashes", 0) - subscription.get("usedInteriorWashes", 0)
    return {
        "leadId": lead.get("id"),
        "customerName": lead.get("customerName"),
        "subscription": subscription,
    }


@router.put("/{lead_id}/monthly-subscription/wash/{wash_id}")
def complete_subscription_wash(
    lead_id: str,
    wash_id: str,
    req: CompleteScheduledWashRequest,
    user: AuthUser = Depends(require_roles(*STAFF)),
):
    lead = find_lead_or_404(lead_id)
    target = subscriptions.find_scheduled_wash(lead.get("monthlySubscription") or {}, wash_id)
    ensure_assigned_or_roles(user, [lead.get("assignedWasher"), (target or {}).get("washer")])
    already_done = (target or {}).get("status") == subscriptions.COMPLETED
    current = now()
    washer = resolve_washer(req.washerId)
    try:
        slot = subscriptions.complete_scheduled_wash(
            lead, wash_id, current,
            paid=req.is_amountPaid, feedback=req.feedback, duration=req.duration,
            washer=washer, is_interior=req.isInterior, completed_date=as_datetime(req.completedDate),
        )
    except (subscriptions.SubscriptionError, subscriptions.ScheduledWashNotFound) as exc:
        raise _domain_error(exc)
    save_lead(lead, current)
    subscription = lead["monthlySubscription"]
    return {
        "message": "Payment updated" if already_done else "Scheduled wash marked as completed",
        "scheduledWash": serialize(slot),
        "completedWashes": subscription["completedWashes"],
        "totalWashes": subscription["totalWashes"],
        "isActive": subscription["isActive"],
    }
