from datetime import datetime
from typing import Any, Dict, Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from pydantic import AliasChoices, BaseModel, Field

import attendance
import revenue
from database import create_document, get_collection
from queries import date_query
from schemas import Expense, ExpenseCategory
from security import ADMINS, WASHER, AuthUser, require_roles
from utils import as_datetime, date_window, month_window, now, objid, serialize

router = APIRouter(prefix="/api/expenses", tags=["expenses"])


class ExpenseRequest(BaseModel):
    category: ExpenseCategory = "Other"
    amount: float = Field(..., gt=0)
    description: str = Field(validation_alias=AliasChoices("description", "reason"))
    date: Optional[datetime] = None
    paidTo: Optional[str] = Field(None, validation_alias=AliasChoices("paidTo", "washerName"))


class ExpenseUpdateRequest(BaseModel):
    category: Optional[ExpenseCategory] = None
    amount: Optional[float] = Field(None, gt=0)
    description: Optional[str] = Field(None, validation_alias=AliasChoices("description", "reason"))
    date: Optional[datetime] = None
    paidTo: Optional[str] = Field(None, validation_alias=AliasChoices("paidTo", "washerName"))


def find_expense_or_404(expense_id: str) -> dict:
    expense = get_collection("expense").find_one({"_id": objid(expense_id)})
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.get("")
def list_expenses(
    startDate: Optional[str] = None,
    endDate: Optional[str] = None,
    category: Optional[str] = None,
    user: AuthUser = Depends(require_roles(*ADMINS)),
):
    query: Dict[str, Any] = date_query("date", *date_window(startDate, endDate))
    if category:
        query["category"] = category
    expenses = list(get_collection("expense").find(query).sort("date", -1))
    return {"expenses": serialize(expenses), "total": revenue.expense_total(expenses)}


@router.post("", status_code=201)
def create_expense(req: ExpenseRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    expense = Expense(
        category=req.category,
        amount=req.amount,
        description=req.description,
        date=as_datetime(req.date) or now(),
        paidTo=req.paidTo,
    ).model_dump()
    expense["addedBy"] = ObjectId(user.uid)
    expense_id = create_document("expense", expense)
    return serialize(find_expense_or_404(expense_id))


@router.get("/washers")
def expense_washers(user: AuthUser = Depends(require_roles(*ADMINS))):
    washers = get_collection("user").find({"role": WASHER, "status": "Active"}, {"name": 1, "id": 1}).sort("name", 1)
    return {"washers": serialize(list(washers))}


@router.get("/salary-calculation")
def salary_calculation(month: Optional[str] = None, user: AuthUser = Depends(require_roles(*ADMINS))):
    start, end = month_window(month)
    salary_expenses = list(get_collection("expense").find({"category": "Salary", **date_query("date", start, end)}))
    rows = []
    for washer in get_collection("user").find({"role": WASHER}).sort("name", 1):
        salary = washer.get("salary") or {}
        payable = (salary.get("base") or 0) + (salary.get("bonus") or 0)
        paid = revenue.expense_total(e for e in salary_expenses if e.get("paidTo") == washer.get("name"))
        stats = attendance.summarize(washer.get("attendance") or [], start, end)
        rows.append({
            "washerId": washer.get("id"),
            "name": washer.get("name"),
            "status": washer.get("status"),
            "baseSalary": salary.get("base") or 0,
            "bonus": salary.get("bonus") or 0,
            "payable": payable,
            "paid": paid,
            "balance": payable - paid,
            "presentDays": stats["presentDays"],
            "totalHours": stats["totalHours"],
            "attendancePercentage": stats["attendancePercentage"],
        })
    return {
        "month": start.strftime("%Y-%m"),
        "salaries": rows,
        "totalPayable": sum(r["payable"] for r in rows),
        "totalPaid": sum(r["paid"] for r in rows),
    }


@router.get("/{expense_id}")
def get_expense(expense_id: str, user: AuthUser = Depends(require_roles(*ADMINS))):
    return serialize(find_expense_or_404(expense_id))


@router.put("/{expense_id}")
def update_expense(expense_id: str, req: ExpenseUpdateRequest, user: AuthUser = Depends(require_roles(*ADMINS))):
    expense = find_expense_or_404(expense_id)
    updates = {k: v for k, v in req.model_dump(exclude_unset=True).items() if v is not None}
    if "date" in updates:
        updates["date"] = as_datetime(updates["date"])
    if updates:
        updates["updatedAt"] = now()
        get_collection("expense").update_one({"_id": expense["_id"]}, {"$set": updates})
        expense.update(updates)
    return serialize(expense)


@router.delete("/{expense_id}")
def delete_expense(expense_id: str, user: AuthUser = Depends(require_roles(*ADMINS))):
    res = get_collection("expense").delete_one({"_id": objid(expense_id)})
    if res.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Expense not found")
    return {"message": "Expense deleted successfully"}
