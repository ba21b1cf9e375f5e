"""
Database Schemas for the Car-Wash Operations App

Each Pydantic model maps to a MongoDB collection or to a document embedded
in one. Collection names are the lowercased class name (Lead -> "lead").

Relations (logical):
- lead owns washHistory, oneTimeWash, monthlySubscription.scheduledWashes
  and the finished subscriptions in pastSubscriptions
- lead.assignedWasher / wash.washer reference user._id (role "washer")
- user owns attendance
- expense.addedBy references user._id

These schemas are used for validation at the API boundary and to build new
documents. MongoDB remains schemaless, so read paths use .get() defaults.
"""
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

# ---------- Users ----------

Role = Literal["superadmin", "admin", "limited_admin", "washer"]
UserStatus = Literal["Active", "Inactive"]
AttendanceStatus = Literal["incomplete", "present"]


class Session(BaseModel):
    user_id: str
    token: str
    created_at: Optional[datetime] = None


class Salary(BaseModel):
    base: float = Field(0, ge=0)
    bonus: float = Field(0, ge=0)


class Attendance(BaseModel):
    date: datetime
    timeIn: Optional[datetime] = None
    timeOut: Optional[datetime] = None
    duration: float = 0  # hours
    status: AttendanceStatus = "incomplete"


class User(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., description="Full name")
    email: EmailStr
    phone: Optional[str] = None
    role: Role = "washer"
    hashed_password: str
    status: UserStatus = "Active"
    address: Optional[str] = None
    attendance: List[Attendance] = []
    salary: Optional[Salary] = None


# ---------- Leads ----------

LeadType = Literal["One-time", "Monthly"]
LeadSource = Literal["Pamphlet", "WhatsApp", "Referral", "Walk-in", "Social Media", "Other"]
LeadStatus = Literal["New", "Converted"]
WashStatus = Literal["pending", "in-progress", "completed", "notcompleted"]
WashSource = Literal["adhoc", "onetime", "subscription"]
ScheduledWashStatus = Literal["scheduled", "pending", "completed"]
PackageType = Literal["Basic", "Premium", "Deluxe", "Custom"]


class Location(BaseModel):
    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0], min_length=2, max_length=2)


class Reminder(BaseModel):
    date: Optional[datetime] = None
    note: Optional[str] = None


class WashEntry(BaseModel):
    washType: str
    washer: Optional[str] = None
    amount: float = Field(0, ge=0)
    date: datetime
    feedback: Optional[str] = None
    is_amountPaid: bool = False
    washStatus: WashStatus = "completed"
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    duration: int = 0  # minutes
    isInterior: bool = False
    source: WashSource = "adhoc"
    scheduledWashId: Optional[str] = None


class OneTimeWash(BaseModel):
    washType: str = "Basic"
    amount: float = Field(0, ge=0)
    scheduledDate: Optional[datetime] = None
    washer: Optional[str] = None
    is_amountPaid: bool = False
    status: Literal["scheduled", "completed"] = "scheduled"
    completedDate: Optional[datetime] = None
    washHistoryId: Optional[str] = None


class ScheduledWash(BaseModel):
    washNumber: int = Field(..., ge=1)
    scheduledDate: datetime
    status: ScheduledWashStatus = "scheduled"
    amount: float = 0
    is_amountPaid: bool = False
    washer: Optional[str] = None
    isInterior: bool = False
    completedDate: Optional[datetime] = None
    duration: int = 0
    feedback: Optional[str] = None
    autoGenerated: bool = False


class MonthlySubscription(BaseModel):
    packageType: PackageType
    customPlanName: Optional[str] = None
    totalWashes: int = Field(..., ge=1)
    totalInteriorWashes: int = Field(0, ge=0)
    usedInteriorWashes: int = Field(0, ge=0)
    price: float = Field(..., ge=0)
    perWashAmount: float = 0
    roundingAdjustment: float = 0
    startDate: datetime
    endDate: datetime
    isActive: bool = True
    completedWashes: int = 0
    scheduledWashes: List[ScheduledWash] = []


class Lead(BaseModel):
    id: Optional[int] = None
    leadType: LeadType
    leadSource: LeadSource
    customerName: str
    phone: str
    area: str
    carModel: Optional[str] = None
    notes: Optional[str] = None
    location: Location = Field(default_factory=Location)
    reminder: Optional[Reminder] = None
    status: LeadStatus = "New"
    assignedWasher: Optional[str] = None
    oneTimeWash: Optional[OneTimeWash] = None
    monthlySubscription: Optional[MonthlySubscription] = None
    pastSubscriptions: List[MonthlySubscription] = []
    washHistory: List[WashEntry] = []


# ---------- Expenses ----------

ExpenseCategory = Literal["Salary", "Supplies", "Equipment", "Marketing", "Utilities", "Other"]


class Expense(BaseModel):
    category: ExpenseCategory
    amount: float = Field(..., gt=0)
    description: str
    date: datetime
    paidTo: Optional[str] = None
    addedBy: Optional[str] = None
