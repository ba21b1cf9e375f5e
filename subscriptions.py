"""
Monthly subscription scheduling.

A package choice plus a list of dates becomes a run of dated wash slots in
`monthlySubscription.scheduledWashes`. Every slot also gets a pending
`washHistory` entry pointing back at it (`source="subscription"`,
`scheduledWashId`), so the lead's chronology shows upcoming washes while the
slot stays the canonical record for revenue.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Union

from bson import ObjectId

import lifecycle
from schemas import MonthlySubscription, ScheduledWash
from utils import as_datetime, day_start, same_day

logger = logging.getLogger(__name__)

# packageType -> (totalWashes, price, interior washes)
PACKAGES = {
    "Basic": (3, 300, 1),
    "Premium": (4, 400, 2),
    "Deluxe": (5, 500, 3),
}
CUSTOM = "Custom"
DEFAULT_CUSTOM_WASHES = 3
DEFAULT_CUSTOM_PRICE = 300

SUBSCRIPTION_DAYS = 30

SCHEDULED = "scheduled"
COMPLETED = "completed"


class SubscriptionError(ValueError):
    pass


class ScheduledWashNotFound(LookupError):
    pass


def resolve_package(
    package_type: Optional[str],
    custom_plan_name: Optional[str] = None,
    total_washes: Optional[int] = None,
    price: Optional[float] = None,
    interior_washes: Optional[int] = None,
) -> dict:
    if not package_type:
        raise SubscriptionError("Package type is required")
    if package_type in PACKAGES:
        washes, amount, interior = PACKAGES[package_type]
        return {
            "packageType": package_type,
            "customPlanName": None,
            "totalWashes": washes,
            "price": amount,
            "totalInteriorWashes": interior,
        }
    # anything else is a custom plan, named either explicitly or by the type itself
    name = custom_plan_name or (package_type if package_type != CUSTOM else None)
    if not name:
        raise SubscriptionError("Custom packages need a plan name")
    washes = total_washes or DEFAULT_CUSTOM_WASHES
    if washes < 1:
        raise SubscriptionError("totalWashes must be at least 1")
    amount = DEFAULT_CUSTOM_PRICE if price is None else price
    if amount < 0:
        raise SubscriptionError("price must not be negative")
    return {
        "packageType": CUSTOM,
        "customPlanName": name,
        "totalWashes": washes,
        "price": amount,
        "totalInteriorWashes": max(0, interior_washes or 0),
    }


def per_wash_amount(price: float, total_washes: int) -> int:
    return round(price / total_washes)


def wash_type_of(subscription: dict) -> str:
    if subscription.get("packageType") == CUSTOM:
        return subscription.get("customPlanName") or CUSTOM
    return subscription.get("packageType") or "Basic"


def normalize_dates(dates: Iterable[Union[date, datetime]]) -> List[datetime]:
    """Sort the dates and keep one per calendar day."""
    seen = {}
    for value in dates:
        dt = as_datetime(value)
        if dt is None:
            continue
        seen.setdefault(dt.date(), dt)
    return [seen[d] for d in sorted(seen)]


def _new_slot(number: int, when: datetime, amount: float, paid: bool, washer: Optional[ObjectId], auto: bool = False) -> dict:
    slot = ScheduledWash(
        washNumber=number,
        scheduledDate=when,
        status=SCHEDULED,
        amount=amount,
        is_amountPaid=paid,
        autoGenerated=auto,
    ).model_dump()
    slot["_id"] = ObjectId()
    slot["washer"] = washer
    return slot


def _add_slot(lead: dict, subscription: dict, when: datetime, paid: bool, washer: Optional[ObjectId], at: datetime, auto: bool = False) -> dict:
    assign = washer is not None and (same_day(when, at) or same_day(when, at + timedelta(days=1)))
    slot_washer = washer if assign else None
    slot = _new_slot(len(subscription["scheduledWashes"]) + 1, when, subscription["perWashAmount"], paid, slot_washer, auto)
    subscription["scheduledWashes"].append(slot)

    mirror = lifecycle.new_wash_entry(
        wash_type=wash_type_of(subscription),
        amount=slot["amount"],
        date=when,
        washer=slot_washer,
        status=lifecycle.PENDING,
        paid=paid,
        source="subscription",
        scheduled_wash_id=slot["_id"],
    )
    lead.setdefault("washHistory", []).append(mirror)

    if assign:
        lead["assignedWasher"] = washer
    return slot


def create_subscription(
    lead: dict,
    package: dict,
    dates: Iterable[Union[date, datetime]],
    paid: bool,
    at: datetime,
    washer: Optional[ObjectId] = None,
) -> dict:
    """Attach a new active subscription to `lead` with one slot per date."""
    existing = lead.get("monthlySubscription")
    if existing and existing.get("isActive"):
        raise SubscriptionError("Lead already has an active monthly subscription")

    slot_dates = normalize_dates(dates)
    if not slot_dates:
        raise SubscriptionError("At least one wash date is required")
    if len(slot_dates) > package["totalWashes"]:
        raise SubscriptionError(
            f"{len(slot_dates)} dates supplied for a {package['totalWashes']}-wash package"
        )

    amount = per_wash_amount(package["price"], package["totalWashes"])
    start = day_start(slot_dates[0])
    subscription = MonthlySubscription(
        **package,
        perWashAmount=amount,
        roundingAdjustment=package["price"] - amount * package["totalWashes"],
        startDate=start,
        endDate=start + timedelta(days=SUBSCRIPTION_DAYS),
        isActive=True,
        completedWashes=0,
    ).model_dump()
    subscription["createdAt"] = at
    if existing:
        # finished slots stay the record of their washes
        lead.setdefault("pastSubscriptions", []).append(existing)
    lead["monthlySubscription"] = subscription

    for when in slot_dates:
        _add_slot(lead, subscription, when, paid, washer, at)

    lead["leadType"] = "Monthly"
    lifecycle.mark_converted(lead)
    return subscription


def auto_generate_slots(lead: dict, at: datetime, washer: Optional[ObjectId] = None) -> List[dict]:
    """Fill the subscription up to totalWashes with evenly spaced slots after the last one."""
    subscription = lead["monthlySubscription"]
    slots = subscription["scheduledWashes"]
    missing = subscription["totalWashes"] - len(slots)
    if missing <= 0:
        return []
    interval = max(1, SUBSCRIPTION_DAYS // subscription["totalWashes"])
    last = max(slot["scheduledDate"] for slot in slots)
    paid = bool(slots[0].get("is_amountPaid"))
    created = []
    for n in range(1, missing + 1):
        when = last + timedelta(days=interval * n)
        created.append(_add_slot(lead, subscription, when, paid, washer, at, auto=True))
    return created


def find_scheduled_wash(subscription: dict, wash_id) -> Optional[dict]:
    value = str(wash_id)
    for slot in subscription.get("scheduledWashes") or []:
        if str(slot.get("_id")) == value:
            return slot
    if value.isdigit():
        for slot in subscription.get("scheduledWashes") or []:
            if slot.get("washNumber") == int(value):
                return slot
    return None


def all_subscriptions(lead: dict) -> List[dict]:
    """Finished subscriptions first, then the current one."""
    subs = list(lead.get("pastSubscriptions") or [])
    if lead.get("monthlySubscription"):
        subs.append(lead["monthlySubscription"])
    return subs


def find_slot(lead: dict, slot_id) -> Optional[dict]:
    for subscription in all_subscriptions(lead):
        for slot in subscription.get("scheduledWashes") or []:
            if str(slot.get("_id")) == str(slot_id):
                return slot
    return None


def _find_mirror(lead: dict, subscription: dict, slot: dict) -> Optional[dict]:
    history = lead.get("washHistory") or []
    for entry in history:
        if entry.get("scheduledWashId") is not None and str(entry["scheduledWashId"]) == str(slot["_id"]):
            return entry
    wash_type = wash_type_of(subscription)
    for entry in history:
        if (
            entry.get("scheduledWashId") is None
            and entry.get("washStatus") == lifecycle.PENDING
            and entry.get("washType") == wash_type
            and same_day(entry.get("date"), slot.get("scheduledDate"))
        ):
            return entry
    return None


def record_payment(
    lead: dict,
    slot: dict,
    at: datetime,
    paid: Optional[bool] = None,
    amount: Optional[float] = None,
) -> dict:
    """Correct payment state or amount on a slot, completed or not, and on its mirror."""
    if paid is not None:
        slot["is_amountPaid"] = paid
    if amount is not None:
        slot["amount"] = amount
    slot["updatedAt"] = at
    for entry in lead.get("washHistory") or []:
        if entry.get("scheduledWashId") is not None and str(entry["scheduledWashId"]) == str(slot["_id"]):
            entry["is_amountPaid"] = slot["is_amountPaid"]
            entry["amount"] = slot["amount"]
            entry["updatedAt"] = at
    return slot


def sync_counters(subscription: dict) -> None:
    slots = subscription.get("scheduledWashes") or []
    subscription["completedWashes"] = sum(1 for s in slots if s.get("status") == COMPLETED)
    subscription["isActive"] = subscription["completedWashes"] < subscription.get("totalWashes", 0)


def complete_scheduled_wash(
    lead: dict,
    wash_id,
    at: datetime,
    paid: Optional[bool] = None,
    feedback: Optional[str] = None,
    duration: Optional[int] = None,
    washer: Optional[ObjectId] = None,
    is_interior: bool = False,
    completed_date: Optional[datetime] = None,
) -> dict:
    subscription = lead.get("monthlySubscription")
    if not subscription:
        raise ScheduledWashNotFound("Monthly subscription not found")
    slot = find_scheduled_wash(subscription, wash_id)
    if slot is None:
        raise ScheduledWashNotFound("Scheduled wash not found")
    if slot.get("status") == COMPLETED:
        if paid is None:
            raise SubscriptionError("Scheduled wash is already completed")
        return record_payment(lead, slot, at, paid=paid)
    if not subscription.get("isActive"):
        raise SubscriptionError("Subscription is no longer active")
    if is_interior:
        if subscription.get("usedInteriorWashes", 0) >= subscription.get("totalInteriorWashes", 0):
            raise SubscriptionError("No interior washes left in this package")
        subscription["usedInteriorWashes"] = subscription.get("usedInteriorWashes", 0) + 1

    done_at = completed_date or at
    slot["status"] = COMPLETED
    slot["completedDate"] = done_at
    slot["duration"] = lifecycle.compute_duration(None, None, duration)
    slot["feedback"] = feedback
    slot["isInterior"] = is_interior
    if paid is not None:
        slot["is_amountPaid"] = paid
    if washer is not None:
        slot["washer"] = washer

    mirror = _find_mirror(lead, subscription, slot)
    if mirror is not None:
        mirror["washStatus"] = lifecycle.COMPLETED
        mirror["is_amountPaid"] = slot["is_amountPaid"]
        mirror["feedback"] = feedback
        mirror["endTime"] = done_at
        mirror["duration"] = slot["duration"]
        mirror["isInterior"] = is_interior
        mirror["washer"] = slot.get("washer") or mirror.get("washer")
        mirror["source"] = "subscription"
        mirror["scheduledWashId"] = slot["_id"]
        mirror["updatedAt"] = at
    else:
        lead.setdefault("washHistory", []).append(lifecycle.new_wash_entry(
            wash_type=wash_type_of(subscription),
            amount=slot["amount"],
            date=done_at,
            washer=slot.get("washer"),
            status=lifecycle.COMPLETED,
            paid=slot["is_amountPaid"],
            feedback=feedback,
            source="subscription",
            scheduled_wash_id=slot["_id"],
            is_interior=is_interior,
            end_time=done_at,
            duration=slot["duration"],
        ))

    sync_counters(subscription)
    lifecycle.mark_converted(lead)
    return slot
