import hashlib
import secrets
from typing import Callable, Iterable, Optional

from bson import ObjectId
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr

from database import get_collection
from schemas import Role, Session
from utils import now

SUPERADMIN = "superadmin"
ADMIN = "admin"
LIMITED_ADMIN = "limited_admin"
WASHER = "washer"

ADMINS = (SUPERADMIN, ADMIN)
VIEWERS = ADMINS + (LIMITED_ADMIN,)
STAFF = VIEWERS + (WASHER,)

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


class AuthUser(BaseModel):
    uid: str
    id: Optional[int] = None
    name: str
    email: EmailStr
    role: Role


def to_auth_user(user_doc: dict) -> AuthUser:
    return AuthUser(
        uid=str(user_doc["_id"]),
        id=user_doc.get("id"),
        name=user_doc["name"],
        email=user_doc["email"],
        role=user_doc.get("role", WASHER),
    )


def issue_token(user_id: ObjectId) -> str:
    token = secrets.token_urlsafe(24)
    session = Session(user_id=str(user_id), token=token, created_at=now()).model_dump()
    session["user_id"] = user_id
    get_collection("session").insert_one(session)
    return token


def _user_from_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> Optional[AuthUser]:
    if credentials is None or not credentials.credentials:
        return None
    session = get_collection("session").find_one({"token": credentials.credentials})
    if not session:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_doc = get_collection("user").find_one({"_id": session["user_id"]})
    if not user_doc:
        raise HTTPException(status_code=401, detail="Invalid session user")
    if user_doc.get("status", "Active") != "Active":
        raise HTTPException(status_code=403, detail="Account is inactive")
    return to_auth_user(user_doc)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> AuthUser:
    user = _user_from_credentials(credentials)
    if user is None:
        raise HTTPException(status_code=401, detail="No token, authorization denied")
    return user


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> Optional[AuthUser]:
    return _user_from_credentials(credentials)


def require_roles(*roles: str) -> Callable[..., AuthUser]:
    """Dependency that admits only the given roles."""

    def dependency(user: AuthUser = Depends(get_current_user)) -> AuthUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Access denied")
        return user

    return dependency


def ensure_assigned_or_roles(user: AuthUser, washer_ids: Iterable, roles=VIEWERS) -> None:
    """Washers may act only where one of `washer_ids` is theirs; the given roles anywhere."""
    if user.role in roles:
        return
    if user.uid not in {str(w) for w in washer_ids if w is not None}:
        raise HTTPException(status_code=403, detail="Access denied")


def ensure_self_or_roles(user: AuthUser, target_doc: dict, roles=VIEWERS) -> None:
    """Washers may act on their own record only; the given roles on any."""
    ensure_assigned_or_roles(user, [target_doc.get("_id")], roles)
