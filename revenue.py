"""
Revenue reconciliation.

Washes are recorded in two places on a lead: ad hoc entries in `washHistory`
and subscription slots in `monthlySubscription.scheduledWashes`, or in
`pastSubscriptions` once a plan has been renewed. Subscription slots are
mirrored into `washHistory` for the lead chronology; the slot is the
canonical record, so mirrors are skipped here. Everything below works on plain
lead/expense documents and never touches the database.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from lifecycle import LEAD_CONVERTED, is_converted_wash, is_revenue_eligible
from subscriptions import all_subscriptions, wash_type_of
from utils import same_day


def _amount(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _in_window(when: Optional[datetime], start: Optional[datetime], end: Optional[datetime]) -> bool:
    if start is None and end is None:
        return True
    if when is None:
        return False
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True


def _lead_matches(lead: dict, area: Optional[str], customer_type: Optional[str]) -> bool:
    if area and area.lower() not in (lead.get("area") or "").lower():
        return False
    if customer_type and lead.get("leadType") != customer_type:
        return False
    return True


def _is_legacy_mirror(entry: dict, lead: dict) -> bool:
    """Entries written before mirrors carried a source: match a slot by day and type."""
    if "source" in entry:
        return False
    for subscription in all_subscriptions(lead):
        if entry.get("washType") == wash_type_of(subscription) and any(
            same_day(entry.get("date"), slot.get("scheduledDate"))
            for slot in subscription.get("scheduledWashes") or []
        ):
            return True
    return False


def _record(lead: dict, wash_id, wash_type, amount, when, washer, paid, status, source, feedback, washer_names) -> dict:
    washer_key = str(washer) if washer is not None else None
    return {
        "transactionId": str(wash_id) if wash_id is not None else None,
        "customerId": str(lead.get("_id")),
        "leadId": lead.get("id"),
        "customerName": lead.get("customerName"),
        "area": lead.get("area"),
        "customerType": lead.get("leadType"),
        "washType": wash_type,
        "amount": _amount(amount),
        "date": when,
        "washer": washer_key,
        "washerName": washer_names.get(washer_key) if washer_key else None,
        "isPaid": paid is True,
        "status": status,
        "source": source,
        "feedback": feedback,
    }


def collect_washes(
    leads: Iterable[dict],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    wash_type: Optional[str] = None,
    area: Optional[str] = None,
    customer_type: Optional[str] = None,
    washer_names: Optional[Dict[str, str]] = None,
) -> List[dict]:
    """One normalized record per wash, whichever mechanism recorded it."""
    names = washer_names or {}
    records = []
    for lead in leads:
        if not _lead_matches(lead, area, customer_type):
            continue

        if lead.get("status") == LEAD_CONVERTED:
            for entry in lead.get("washHistory") or []:
                if entry.get("source") == "subscription" or _is_legacy_mirror(entry, lead):
                    continue
                if wash_type and entry.get("washType") != wash_type:
                    continue
                if not _in_window(entry.get("date"), start, end):
                    continue
                records.append(_record(
                    lead, entry.get("_id"), entry.get("washType"), entry.get("amount"), entry.get("date"),
                    entry.get("washer"), entry.get("is_amountPaid"), entry.get("washStatus", "completed"),
                    entry.get("source", "adhoc"), entry.get("feedback"), names,
                ))

        for subscription in all_subscriptions(lead):
            slot_type = wash_type_of(subscription)
            if wash_type and slot_type != wash_type:
                continue
            for slot in subscription.get("scheduledWashes") or []:
                when = slot.get("completedDate") if slot.get("status") == "completed" else slot.get("scheduledDate")
                when = when or slot.get("scheduledDate")
                if not _in_window(when, start, end):
                    continue
                records.append(_record(
                    lead, slot.get("_id"), slot_type, slot.get("amount"), when,
                    slot.get("washer") or lead.get("assignedWasher"), slot.get("is_amountPaid"),
                    slot.get("status"), "subscription", slot.get("feedback"), names,
                ))
    return records


def total_revenue(records: Iterable[dict]) -> float:
    return sum(r["amount"] for r in records if is_revenue_eligible(r))


def reconcile(records: List[dict]) -> dict:
    """Totals, breakdowns and the transaction feed for a set of wash records."""
    completed = [r for r in records if is_converted_wash(r)]
    eligible = [r for r in completed if is_revenue_eligible(r)]

    revenue_by_type: Dict[str, float] = defaultdict(float)
    washes_by_type: Dict[str, int] = defaultdict(int)
    revenue_by_customer_type: Dict[str, float] = defaultdict(float)
    customers_by_type: Dict[str, set] = defaultdict(set)
    revenue_by_source: Dict[str, float] = defaultdict(float)
    for r in eligible:
        revenue_by_type[r["washType"]] += r["amount"]
        washes_by_type[r["washType"]] += 1
        revenue_by_customer_type[r["customerType"]] += r["amount"]
        customers_by_type[r["customerType"]].add(r["customerId"])
        revenue_by_source[r["source"]] += r["amount"]

    paid = sum(r["amount"] for r in eligible)
    total = sum(r["amount"] for r in completed)
    transactions = sorted(completed, key=lambda r: r["date"] or datetime.min, reverse=True)

    return {
        "totalRevenue": paid,
        "totalWashes": len(eligible),
        "totalCustomers": len({r["customerId"] for r in eligible}),
        "revenueByWashType": dict(revenue_by_type),
        "washesByType": dict(washes_by_type),
        "revenueByCustomerType": dict(revenue_by_customer_type),
        "customersByType": {k: len(v) for k, v in customers_by_type.items()},
        "revenueBySource": dict(revenue_by_source),
        "paymentSummary": {"total": total, "paid": paid, "unpaid": total - paid},
        "recentTransactions": [
            {k: v for k, v in r.items() if k not in ("washer", "status")} for r in transactions
        ],
    }


def revenue_by_month(records: Iterable[dict]) -> Dict[str, float]:
    months: Dict[str, float] = defaultdict(float)
    for r in records:
        if is_revenue_eligible(r) and r["date"]:
            months[r["date"].strftime("%Y-%m")] += r["amount"]
    return dict(sorted(months.items()))


def expense_total(expenses: Iterable[dict]) -> float:
    return sum(_amount(e.get("amount")) for e in expenses)


def net_revenue(revenue: float, expenses: Iterable[dict]) -> float:
    return revenue - expense_total(expenses)


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 0
    return round((current - previous) / previous * 100, 1)
