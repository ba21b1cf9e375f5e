from collections import defaultdict
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends

import attendance
import lifecycle
import revenue
from database import get_collection
from queries import date_query, expenses_between, find_user_or_404, load_leads, revenue_records
from security import ADMINS, VIEWERS, WASHER, AuthUser, require_roles
from utils import date_window, serialize

router = APIRouter(prefix="/api/reports", tags=["reports"])


@router.get("/revenue")
def revenue_report(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*ADMINS)),
):
    records = revenue_records(*date_window(startDate, endDate))
    summary = revenue.reconcile(records)
    return {
        "totalRevenue": summary["totalRevenue"],
        "revenueByMonth": revenue.revenue_by_month(records),
        "revenueByService": summary["revenueByWashType"],
    }


@router.get("/customers")
def customer_report(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    type: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    query: Dict[str, Any] = {"status": lifecycle.LEAD_CONVERTED}
    query.update(date_query("createdAt", *date_window(startDate, endDate)))
    if type:
        query["leadType"] = type

    groups: Dict[str, list] = defaultdict(list)
    for lead in load_leads(query):
        washes = [r for r in revenue.collect_washes([lead]) if lifecycle.is_converted_wash(r)]
        groups[lead.get("leadType")].append({
            "id": lead.get("id"),
            "name": lead.get("customerName"),
            "area": lead.get("area"),
            "phone": lead.get("phone"),
            "totalWashes": len(washes),
            "totalSpent": revenue.total_revenue(washes),
        })
    return [{"_id": k, "count": len(v), "customers": v} for k, v in groups.items()]


@router.get("/washers")
def washer_report(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    washerId: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    records = [r for r in revenue_records(*date_window(startDate, endDate)) if lifecycle.is_converted_wash(r)]
    if washerId:
        washer = find_user_or_404(washerId, role=WASHER)
        records = [r for r in records if r["washer"] == str(washer["_id"])]

    by_washer: Dict[str, list] = defaultdict(list)
    for r in records:
        if r["washer"]:
            by_washer[r["washer"]].append(r)

    report = []
    for washer_key, washes in by_washer.items():
        report.append({
            "_id": washer_key,
            "name": washes[0]["washerName"],
            "totalWashes": len(washes),
            "totalRevenue": revenue.total_revenue(washes),
            "completedWashes": [
                {
                    "date": r["date"],
                    "type": r["washType"],
                    "amount": r["amount"],
                    "isPaid": r["isPaid"],
                    "customerName": r["customerName"],
                    "area": r["area"],
                }
                for r in sorted(washes, key=lambda r: r["date"], reverse=True)
            ],
        })
    report.sort(key=lambda w: w["totalWashes"], reverse=True)
    return report


@router.get("/revenue_and_income")
def revenue_and_income(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    washType: Optional[str] = None,
    area: Optional[str] = None,
    customerType: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*ADMINS)),
):
    start, end = date_window(startDate, endDate)
    records = revenue_records(start, end, wash_type=washType, area=area, customer_type=customerType)
    summary = revenue.reconcile(records)
    expenses = expenses_between(start, end)
    summary["totalExpenses"] = revenue.expense_total(expenses)
    summary["netRevenue"] = revenue.net_revenue(summary["totalRevenue"], expenses)
    return summary


@router.get("/attendance")
def attendance_report(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    start, end = date_window(startDate, endDate)
    rows = []
    for washer in get_collection("user").find({"role": WASHER}).sort("name", 1):
        stats = attendance.summarize(washer.get("attendance") or [], start, end)
        rows.append({"washerId": washer.get("id"), "name": washer.get("name"), "status": washer.get("status"), **stats})
    return serialize(rows)
