from collections import defaultdict
from datetime import timedelta
from typing import Dict

from fastapi import APIRouter, Depends

import attendance
import lifecycle
import revenue
from database import get_collection
from queries import date_query, expenses_between, load_leads, revenue_records, washer_names
from security import ADMINS, VIEWERS, WASHER, AuthUser, require_roles
from utils import day_end, day_start, month_window, now, previous_window, range_window, serialize

router = APIRouter(prefix="/api/dashboard", tags=["dashboard"])


def _trend(current: float, previous: float) -> dict:
    change = revenue.percent_change(current, previous)
    return {"value": current, "previous": previous, "change": change, "increasing": change > 0}


@router.get("/stats")
def dashboard_stats(range: str = "1m", user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = range_window(range)
    prev_start, prev_end = previous_window(start, end)
    leads = get_collection("lead")

    period_leads = list(leads.find(date_query("createdAt", start, end)))
    prev_leads = list(leads.find(date_query("createdAt", prev_start, prev_end)))
    customers = {l.get("customerName") for l in period_leads}
    prev_customers = {l.get("customerName") for l in prev_leads}

    income = revenue.total_revenue(revenue_records(start, end))
    prev_income = revenue.total_revenue(revenue_records(prev_start, prev_end))

    today_start = day_start(now())
    today_leads = leads.count_documents({"createdAt": {"$gte": today_start}})
    yesterday_leads = leads.count_documents({"createdAt": {"$gte": today_start - timedelta(days=1), "$lt": today_start}})

    converted = sum(1 for l in period_leads if l.get("status") == lifecycle.LEAD_CONVERTED)
    return {
        "periodCustomers": _trend(len(customers), len(prev_customers)),
        "income": _trend(income, prev_income),
        "todayLeads": _trend(today_leads, yesterday_leads),
        "conversionRate": {
            "value": round(converted / len(period_leads) * 100, 1) if period_leads else 0,
            "total": len(period_leads),
            "converted": converted,
        },
    }


@router.get("/lead-acquisition")
def lead_acquisition(user: AuthUser = Depends(require_roles(*ADMINS))):
    leads = get_collection("lead")
    data = []
    for i in range(6, -1, -1):
        day = now().date() - timedelta(days=i)
        window = {"$gte": day_start(day), "$lte": day_end(day)}
        data.append({
            "date": day.isoformat(),
            "monthlyCount": leads.count_documents({"leadType": "Monthly", "createdAt": window}),
            "oneTimeCount": leads.count_documents({"leadType": "One-time", "createdAt": window}),
        })
    return data


@router.get("/washer-performance")
def washer_performance(user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = month_window(None)
    records = [r for r in revenue.collect_washes(load_leads(), start, end) if lifecycle.is_converted_wash(r)]
    performance = []
    for washer in get_collection("user").find({"role": WASHER}):
        mine = [r for r in records if r["washer"] == str(washer["_id"])]
        performance.append({
            "name": washer.get("name"),
            "washes": len(mine),
            "revenue": revenue.total_revenue(mine),
        })
    performance.sort(key=lambda p: p["washes"], reverse=True)
    return performance


@router.get("/recent-leads")
def recent_leads(user: AuthUser = Depends(require_roles(*VIEWERS))):
    names = washer_names()
    docs = get_collection("lead").find({}).sort("createdAt", -1).limit(5)
    return [
        {
            "id": d.get("id"),
            "customerName": d.get("customerName"),
            "phone": d.get("phone"),
            "area": d.get("area"),
            "leadType": d.get("leadType"),
            "leadSource": d.get("leadSource"),
            "carModel": d.get("carModel"),
            "assignedWasher": names.get(str(d["assignedWasher"])) if d.get("assignedWasher") else None,
            "date": d.get("createdAt"),
            "status": d.get("status"),
        }
        for d in docs
    ]


@router.get("/washer-attendance")
def washer_attendance(user: AuthUser = Depends(require_roles(*VIEWERS))):
    start, end = month_window(None)
    data = []
    for washer in get_collection("user").find({"role": WASHER}):
        stats = attendance.summarize(washer.get("attendance") or [], start, end)
        data.append({
            "name": washer.get("name"),
            "presentDays": stats["presentDays"],
            "recordedDays": stats["totalDays"],
            "attendancePercentage": stats["attendancePercentage"],
        })
    return data


@router.get("/revenue-by-service")
def revenue_by_service(user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = month_window(None)
    summary = revenue.reconcile(revenue_records(start, end))
    return [{"serviceType": k, "revenue": v} for k, v in summary["revenueByWashType"].items()]


@router.get("/lead-sources")
def lead_sources(user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = month_window(None)
    totals: Dict[str, int] = defaultdict(int)
    converted: Dict[str, int] = defaultdict(int)
    for lead in load_leads(date_query("createdAt", start, end)):
        source = lead.get("leadSource")
        totals[source] += 1
        if lead.get("status") == lifecycle.LEAD_CONVERTED:
            converted[source] += 1
    return [
        {
            "source": source,
            "totalLeads": count,
            "convertedLeads": converted[source],
            "conversionRate": round(converted[source] / count * 100, 1),
        }
        for source, count in totals.items()
    ]


@router.get("/area-distribution")
def area_distribution(user: AuthUser = Depends(require_roles(*VIEWERS))):
    areas: Dict[str, dict] = {}
    for lead in load_leads():
        row = areas.setdefault(lead.get("area"), {"area": lead.get("area"), "totalLeads": 0, "activeCustomers": 0})
        row["totalLeads"] += 1
        if (lead.get("monthlySubscription") or {}).get("isActive"):
            row["activeCustomers"] += 1
    return list(areas.values())


@router.get("/feedback-analytics")
def feedback_analytics(user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = month_window(None)
    completed = [r for r in revenue.collect_washes(load_leads(), start, end) if lifecycle.is_converted_wash(r)]
    with_feedback = sum(1 for r in completed if r.get("feedback"))
    return {
        "totalServices": len(completed),
        "feedbackReceived": with_feedback,
        "feedbackRate": round(with_feedback / len(completed) * 100, 1) if completed else 0,
    }


@router.get("/today-tomorrow-wash-count")
def today_tomorrow_wash_count(user: AuthUser = Depends(require_roles(*VIEWERS))):
    today = now().date()
    tomorrow = today + timedelta(days=1)
    records = revenue.collect_washes(load_leads(), day_start(today), day_end(tomorrow))
    return {
        "todayCount": sum(1 for r in records if r["date"].date() == today),
        "tomorrowCount": sum(1 for r in records if r["date"].date() == tomorrow),
    }


@router.get("/customer-stats")
def customer_stats(range: str = "1m", user: AuthUser = Depends(require_roles(*VIEWERS))):
    start, end = range_window(range)
    prev_start, prev_end = previous_window(start, end)
    customers = load_leads({"status": lifecycle.LEAD_CONVERTED})

    def created_between(a, b):
        return sum(1 for c in customers if c.get("createdAt") and a <= c["createdAt"] <= b)

    return {
        "totalCustomers": len(customers),
        "oneTimeCustomers": sum(1 for c in customers if c.get("leadType") == "One-time"),
        "monthlyCustomers": sum(1 for c in customers if c.get("leadType") == "Monthly"),
        "activeSubscriptions": sum(1 for c in customers if (c.get("monthlySubscription") or {}).get("isActive")),
        "newCustomers": _trend(created_between(start, end), created_between(prev_start, prev_end)),
    }


@router.get("/revenue-stats")
def revenue_stats(range: str = "1m", user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = range_window(range)
    prev_start, prev_end = previous_window(start, end)
    summary = revenue.reconcile(revenue_records(start, end))
    previous = revenue.total_revenue(revenue_records(prev_start, prev_end))
    washes = summary["totalWashes"]
    return {
        "revenue": _trend(summary["totalRevenue"], previous),
        "totalWashes": washes,
        "averagePerWash": round(summary["totalRevenue"] / washes, 2) if washes else 0,
        "paymentSummary": summary["paymentSummary"],
        "revenueByCustomerType": summary["revenueByCustomerType"],
    }


@router.get("/direct-revenue")
def direct_revenue(range: str = "1m", user: AuthUser = Depends(require_roles(*ADMINS))):
    """Walk-in and one-time washes against subscription washes."""
    start, end = range_window(range)
    records = revenue_records(start, end)
    direct = [r for r in records if r["source"] != "subscription"]
    subscription = [r for r in records if r["source"] == "subscription"]
    return {
        "directRevenue": revenue.total_revenue(direct),
        "directWashes": sum(1 for r in direct if lifecycle.is_revenue_eligible(r)),
        "subscriptionRevenue": revenue.total_revenue(subscription),
        "subscriptionWashes": sum(1 for r in subscription if lifecycle.is_revenue_eligible(r)),
        "totalRevenue": revenue.total_revenue(records),
        "unpaidDirect": sum(
            r["amount"] for r in direct if lifecycle.is_converted_wash(r) and not lifecycle.is_revenue_eligible(r)
        ),
    }


@router.get("/expenses-stats")
def expenses_stats(range: str = "1m", user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = range_window(range)
    prev_start, prev_end = previous_window(start, end)
    expenses = expenses_between(start, end)
    by_category: Dict[str, float] = defaultdict(float)
    for e in expenses:
        by_category[e.get("category") or "Other"] += e.get("amount") or 0
    total = revenue.expense_total(expenses)
    income = revenue.total_revenue(revenue_records(start, end))
    return {
        "expenses": _trend(total, revenue.expense_total(expenses_between(prev_start, prev_end))),
        "byCategory": dict(by_category),
        "income": income,
        "netRevenue": income - total,
        "recent": serialize(expenses[:5]),
    }
