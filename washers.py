from datetime import datetime
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr, Field

import attendance
import lifecycle
import revenue
from database import get_collection, next_sequence
from leads import upcoming_washes
from queries import find_user_or_404, load_leads, washer_names
from schemas import Salary, User, UserStatus
from security import ADMINS, STAFF, VIEWERS, WASHER, AuthUser, ensure_self_or_roles, hash_password, require_roles
from utils import date_window, day_end, day_start, now, serialize

router = APIRouter(prefix="/api/washer", tags=["washer"])

PUBLIC_FIELDS = ("_id", "id", "name", "email", "phone", "role", "status", "address", "salary", "createdAt")


def public_user(doc: dict) -> dict:
    return serialize({k: doc.get(k) for k in PUBLIC_FIELDS})


def washer_records(washer_id: str, start: Optional[datetime] = None, end: Optional[datetime] = None):
    records = revenue.collect_washes(load_leads(), start, end, washer_names=washer_names())
    return [r for r in records if r["washer"] == washer_id]


class CreateWasherRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None
    salary: Optional[Salary] = None


class AttendanceRequest(BaseModel):
    washerId: str
    type: Literal["in", "out"]


class StatusRequest(BaseModel):
    status: UserStatus


class SalaryRequest(BaseModel):
    base: float = Field(..., ge=0)
    bonus: float = Field(0, ge=0)


@router.get("/list")
def list_washers(user: AuthUser = Depends(require_roles(*VIEWERS))):
    washers = list(get_collection("user").find({"role": WASHER, "status": "Active"}).sort("name", 1))
    records = revenue.collect_washes(load_leads())
    result = []
    for washer in washers:
        mine = [r for r in records if r["washer"] == str(washer["_id"])]
        data = public_user(washer)
        data["summary"] = {
            "total": len(mine),
            "completed": sum(1 for r in mine if lifecycle.is_converted_wash(r)),
            "pending": sum(1 for r in mine if r["status"] in ("pending", "scheduled", "in-progress")),
            "notCompleted": sum(1 for r in mine if r["status"] == lifecycle.NOT_COMPLETED),
        }
        result.append(data)
    return result


@router.post("/create", status_code=201)
def create_washer(req: CreateWasherRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    users = get_collection("user")
    if users.find_one({"email": req.email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    doc = User(
        id=next_sequence("userId"),
        name=req.name,
        email=req.email,
        phone=req.phone,
        address=req.address,
        role=WASHER,
        hashed_password=hash_password(req.password),
        salary=req.salary,
    ).model_dump()
    doc["createdAt"] = now()
    doc["_id"] = users.insert_one(doc).inserted_id
    return public_user(doc)


@router.post("/attendance")
def mark_attendance(req: AttendanceRequest, user: AuthUser = Depends(require_roles(*STAFF))):
    washer = find_user_or_404(req.washerId, role=WASHER)
    ensure_self_or_roles(user, washer, roles=ADMINS)

    entries = washer.get("attendance") or []
    current = now()
    try:
        if req.type == "in":
            entry = attendance.clock_in(entries, current)
        else:
            entry = attendance.clock_out(entries, current)
    except attendance.AttendanceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    get_collection("user").update_one({"_id": washer["_id"]}, {"$set": {"attendance": entries}})
    return {"message": f"Time-{req.type} marked successfully", "attendance": serialize(entry)}


@router.get("/{washer_id}")
def get_washer(washer_id: str, user: AuthUser = Depends(require_roles(*VIEWERS))):
    washer = find_user_or_404(washer_id, role=WASHER)
    current = now()
    todays = upcoming_washes(load_leads(), day_start(current), day_end(current), washer_names())
    data = public_user(washer)
    data["todayWashes"] = serialize([w for w in todays if w["washer"] and w["washer"]["_id"] == str(washer["_id"])])
    return data


@router.get("/{washer_id}/attendance")
def get_attendance(
    washer_id: str,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*STAFF)),
):
    washer = find_user_or_404(washer_id, role=WASHER)
    ensure_self_or_roles(user, washer)
    start, end = date_window(startDate, endDate)
    rows = attendance.in_period(washer.get("attendance") or [], start, end)
    return {
        "attendance": serialize(sorted(rows, key=lambda a: a["date"], reverse=True)),
        "stats": attendance.summarize(rows),
    }


@router.post("/{washer_id}/status")
def update_status(washer_id: str, req: StatusRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    washer = find_user_or_404(washer_id, role=WASHER)
    get_collection("user").update_one({"_id": washer["_id"]}, {"$set": {"status": req.status}})
    return {"message": "Washer status updated successfully"}


@router.put("/{washer_id}/salary")
def update_salary(washer_id: str, req: SalaryRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    washer = find_user_or_404(washer_id, role=WASHER)
    salary = Salary(base=req.base, bonus=req.bonus).model_dump()
    get_collection("user").update_one({"_id": washer["_id"]}, {"$set": {"salary": salary}})
    return {"message": "Salary updated successfully", "salary": salary}


@router.get("/{washer_id}/wash-details")
def wash_details(
    washer_id: str,
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*VIEWERS)),
):
    washer = find_user_or_404(washer_id, role=WASHER)
    start, end = date_window(startDate, endDate)
    records = washer_records(str(washer["_id"]), start, end)
    completed = [r for r in records if lifecycle.is_converted_wash(r)]
    all_washes = sorted(records, key=lambda r: r["date"] or datetime.min, reverse=True)
    data = public_user(washer)
    data["stats"] = {
        "totalEarnings": revenue.total_revenue(records),
        "totalWashes": len(records),
        "completedWashes": len(completed),
        "completionRate": round(len(completed) / len(records) * 100, 1) if records else 0,
    }
    data["recentWashes"] = all_washes[:10]
    data["allWashes"] = all_washes
    return data
