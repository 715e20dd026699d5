"""
Customers and staff share one `user` collection; `role` decides what they may do.
"""
import logging
from typing import Optional

from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field

from database import create_document, get_documents, get_document_by_id, count_documents
from errors import AuthenticationError, AuthorizationError, InvalidRequestError, NotFoundError
from schemas import User, UserRole

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

STAFF_CAPABILITIES = {
    "orders:read_all",
    "orders:update_status",
    "notifications:send",
}
ADMIN_CAPABILITIES = STAFF_CAPABILITIES | {
    "services:manage",
    "slots:manage",
    "users:read",
    "orders:cleanup",
}
CAPABILITIES = {
    "customer": {"orders:create", "payments:verify"},
    "staff": STAFF_CAPABILITIES,
    "admin": ADMIN_CAPABILITIES,
    "owner": ADMIN_CAPABILITIES | {"analytics:read", "staff:manage"},
}


class SignupRequest(BaseModel):
    first_name: str
    last_name: str
    email: EmailStr
    phone: str
    password: str = Field(..., min_length=8)
    is_whatsapp: bool = False


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class StaffCreateRequest(SignupRequest):
    role: UserRole = "staff"
    assigned_areas: list = Field(default_factory=list)
    employee_id: Optional[str] = Field(None, min_length=3, max_length=20)


def has_capability(user: dict, capability: str) -> bool:
    return capability in CAPABILITIES.get(user.get("role", "customer"), set())


def is_staff(user: dict) -> bool:
    return user.get("role", "customer") != "customer"


def require_capability(user: dict, capability: str):
    if not has_capability(user, capability):
        raise AuthorizationError(f"Role '{user.get('role')}' is not allowed to perform '{capability}'")


def public_profile(user: dict) -> dict:
    return {k: v for k, v in user.items() if k != "password_hash"}


def _create_user(payload: SignupRequest, role: str, **extra) -> dict:
    existing = get_documents("user", {"email": payload.email}, limit=1)
    if existing:
        raise InvalidRequestError("Email already registered")
    password_hash = pwd_context.hash(payload.password)
    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=payload.email,
        phone=payload.phone,
        is_whatsapp=payload.is_whatsapp,
        password_hash=password_hash,
        role=role,
        **extra,
    )
    user_id = create_document("user", user)
    logger.info(f"Created {role} account {user_id}")
    return public_profile({"_id": user_id, **user.model_dump()})


def signup(payload: SignupRequest) -> dict:
    return _create_user(payload, "customer")


def create_staff(owner: dict, payload: StaffCreateRequest) -> dict:
    require_capability(owner, "staff:manage")
    if payload.role == "customer":
        raise InvalidRequestError("Role must be admin, staff, or owner")
    return _create_user(
        payload,
        payload.role,
        assigned_areas=payload.assigned_areas,
        employee_id=payload.employee_id,
    )


def login(payload: LoginRequest) -> dict:
    users = get_documents("user", {"email": payload.email}, limit=1)
    if not users:
        raise AuthenticationError("Invalid credentials")
    user = users[0]
    if not user.get("is_active", True) or not pwd_context.verify(payload.password, user["password_hash"]):
        raise AuthenticationError("Invalid credentials")
    return public_profile(user)


def get_user(user_id: str) -> dict:
    user = get_document_by_id("user", user_id)
    if not user:
        raise NotFoundError("User not found")
    return public_profile(user)


def list_users(role: Optional[str] = None, limit: int = 100) -> list:
    filt = {"role": role} if role else {}
    users = get_documents("user", filt, limit=limit, sort=[["created_at", -1]])
    return [public_profile(u) for u in users]


def customer_stats(customer_id: str) -> dict:
    get_user(customer_id)
    base = {"customer_id": customer_id, "items_pending": False}
    paid = get_documents("order", {**base, "payment_status": "paid"})
    return {
        "total_orders": count_documents("order", base),
        "completed_orders": count_documents("order", {**base, "status": "delivered"}),
        "total_spent": sum(o.get("amount_paid") or 0 for o in paid),
    }
