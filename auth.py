from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, EmailStr

from database import get_collection, next_sequence
from schemas import Role, User
from security import (
    SUPERADMIN,
    WASHER,
    AuthUser,
    get_current_user,
    get_optional_user,
    hash_password,
    issue_token,
    to_auth_user,
)
from utils import now

router = APIRouter(prefix="/api/auth", tags=["auth"])


class RegisterRequest(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    role: Role = WASHER


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    token: str
    user: AuthUser


@router.post("/register", response_model=TokenResponse, status_code=201)
def register(req: RegisterRequest, caller: Optional[AuthUser] = Depends(get_optional_user)):
    users = get_collection("user")
    if users.find_one({"email": req.email}):
        raise HTTPException(status_code=400, detail="Email already registered")

    role = req.role
    if users.count_documents({}) == 0:
        role = SUPERADMIN
    elif role != WASHER and (caller is None or caller.role != SUPERADMIN):
        raise HTTPException(status_code=403, detail="Only a superadmin can create admin accounts")

    user = User(
        id=next_sequence("userId"),
        name=req.name,
        email=req.email,
        phone=req.phone,
        role=role,
        hashed_password=hash_password(req.password),
    ).model_dump()
    user["createdAt"] = now()
    user["_id"] = users.insert_one(user).inserted_id
    token = issue_token(user["_id"])
    return TokenResponse(token=token, user=to_auth_user(user))


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest):
    user = get_collection("user").find_one({"email": req.email})
    if not user or user.get("hashed_password") != hash_password(req.password):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if user.get("status", "Active") != "Active":
        raise HTTPException(status_code=403, detail="Account is inactive")
    token = issue_token(user["_id"])
    return TokenResponse(token=token, user=to_auth_user(user))


@router.get("/me", response_model=AuthUser)
def me(user: AuthUser = Depends(get_current_user)):
    return user
