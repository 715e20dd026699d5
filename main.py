import logging
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Depends, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, EmailStr, ValidationError
from starlette.concurrency import run_in_threadpool

import analytics
import catalog
import config
import database
import orders
import payments
import timeslots
import users
from errors import AppError, AuthenticationError, AuthorizationError, InvalidRequestError
from notifications import WhatsAppClient, send_order_notification
from order_status import transition_order
from paystack import PaystackClient
from schemas import BookingRequest, Service, ServiceType, StatusUpdateRequest, Timeslot

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL/DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Laundry Pickup & Delivery API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================== Response envelope =====================
def ok(data=None, message: Optional[str] = None) -> dict:
    body = {"success": True, "data": data}
    if message:
        body["message"] = message
    return body


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=422, content={"success": False, "error": message})


@app.exception_handler(ValidationError)
async def model_validation_handler(request: Request, exc: ValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid data"
    return JSONResponse(status_code=422, content={"success": False, "error": message})


# ===================== Identity =====================
# Session handling lives in front of this API; callers pass the signed-in user id.
def current_user(x_user_id: Optional[str] = Header(None)) -> dict:
    if not x_user_id:
        raise AuthenticationError("Missing X-User-Id header")
    user = database.get_document_by_id("user", x_user_id)
    if not user or not user.get("is_active", True):
        raise AuthenticationError("Unknown user")
    return users.public_profile(user)


def requires(capability: str):
    def dependency(user: dict = Depends(current_user)) -> dict:
        users.require_capability(user, capability)
        return user
    return dependency


def get_paystack() -> PaystackClient:
    return PaystackClient()


def get_whatsapp() -> WhatsAppClient:
    return WhatsAppClient()


# ===================== Public Endpoints =====================
@app.get("/")
def root():
    return {"message": "Laundry Pickup & Delivery API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["collections"] = database.db.list_collection_names()
        else:
            response["database"] = "⚠️  Available but not initialized"
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["database_url"] = "✅ Set" if config.DATABASE_URL else "❌ Not Set"
    response["database_name"] = "✅ Set" if config.DATABASE_NAME else "❌ Not Set"
    response["paystack"] = "✅ Set" if config.PAYSTACK_SECRET_KEY else "❌ Not Set"
    response["whatsapp"] = "✅ Set" if config.WHATSAPP_ACCESS_TOKEN else "❌ Not Set"
    return response


# ===================== Auth & users =====================
@app.post("/auth/signup")
def signup(payload: users.SignupRequest):
    return ok(users.signup(payload), "Account created")


@app.post("/auth/login")
def login(payload: users.LoginRequest):
    return ok(users.login(payload))


@app.get("/users/me")
def me(user: dict = Depends(current_user)):
    return ok(user)


@app.get("/users/{user_id}/stats")
def user_stats(user_id: str, user: dict = Depends(current_user)):
    if user["_id"] != user_id:
        users.require_capability(user, "users:read")
    return ok(users.customer_stats(user_id))


@app.get("/admin/users")
def list_users(role: Optional[str] = None, user: dict = Depends(requires("users:read"))):
    return ok(users.list_users(role))


@app.post("/admin/staff")
def create_staff(payload: users.StaffCreateRequest, user: dict = Depends(current_user)):
    return ok(users.create_staff(user, payload), "Staff member created successfully")


# ===================== Services =====================
class ServiceUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[ServiceType] = None
    description: Optional[str] = None
    base_price: Optional[int] = None
    price_per_kg: Optional[int] = None
    price_per_item: Optional[int] = None
    estimated_duration: Optional[int] = None
    is_active: Optional[bool] = None
    available_areas: Optional[List[str]] = None
    special_instructions: Optional[str] = None
    category: Optional[str] = None
    display_order: Optional[int] = None
    tags: Optional[List[str]] = None


@app.get("/services")
def list_services(area: Optional[str] = None, type: Optional[ServiceType] = None):
    return ok(catalog.list_active_services(area, type))


@app.get("/services/{service_id}")
def get_service(service_id: str):
    return ok(catalog.get_service(service_id))


@app.post("/admin/services")
def create_service(payload: Service, user: dict = Depends(requires("services:manage"))):
    return ok({"_id": catalog.create_service(payload)})


@app.put("/admin/services/{service_id}")
def update_service(service_id: str, payload: ServiceUpdate, user: dict = Depends(requires("services:manage"))):
    current = catalog.get_service(service_id)
    merged = {k: v for k, v in current.items() if k in Service.model_fields}
    merged.update(payload.model_dump(exclude_unset=True))
    Service(**merged)
    return ok(catalog.update_service(service_id, payload.model_dump(exclude_unset=True)))


@app.post("/admin/seed")
def seed(user: dict = Depends(requires("services:manage"))):
    created = catalog.seed_services()
    return ok({"created": created}, "Seed complete")


# ===================== Time slots =====================
@app.get("/slots")
def list_slots(date: str, area: str, slot_type: str = "both"):
    return ok(timeslots.available_time_slots(date, area, slot_type))


@app.post("/admin/slots")
def create_slots(payload: List[Timeslot], user: dict = Depends(requires("slots:manage"))):
    return ok({"ids": timeslots.create_time_slots(payload)})


@app.post("/slots/{slot_id}/book")
def book_slot(slot_id: str, user: dict = Depends(current_user)):
    return ok(timeslots.book_time_slot(slot_id))


# ===================== Orders =====================
class EstimateService(BaseModel):
    service_id: str
    quantity: int = 1


class EstimateRequest(BaseModel):
    services: List[EstimateService]
    pickup_date: str


@app.post("/orders")
def create_order(payload: BookingRequest, user: dict = Depends(current_user)):
    if payload.customer_id != user["_id"]:
        raise AuthorizationError("You can only place orders for yourself")
    users.require_capability(user, "orders:create")
    details = orders.create_order(payload)
    return ok(details, f"Order {details['order']['order_number']} created successfully")


@app.post("/orders/estimate")
def estimate(payload: EstimateRequest):
    return ok(orders.estimate_delivery([s.model_dump() for s in payload.services], payload.pickup_date))


@app.get("/orders")
def list_orders(status: Optional[str] = None, date: Optional[str] = None, limit: int = 20, offset: int = 0, user: dict = Depends(current_user)):
    if not users.is_staff(user):
        return ok(orders.list_customer_orders(user["_id"], limit, offset))
    users.require_capability(user, "orders:read_all")
    if status:
        return ok(orders.list_orders_by_status(status, limit))
    if date:
        return ok(orders.list_orders_on_date(date))
    raise InvalidRequestError("Filter by status or date")


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: dict = Depends(current_user)):
    return ok(orders.get_order_for_user(order_id, user))


@app.put("/admin/orders/{order_id}/status")
def update_order_status(order_id: str, payload: StatusUpdateRequest, user: dict = Depends(requires("orders:update_status"))):
    order = transition_order(order_id, payload.status, user["_id"], payload.notes, payload.expected_version)
    return ok(order, f"Order status updated to {payload.status}")


@app.post("/admin/orders/cleanup")
def cleanup_orders(older_than_minutes: Optional[int] = None, user: dict = Depends(requires("orders:cleanup"))):
    return ok({"removed": orders.cleanup_incomplete_orders(older_than_minutes)})


@app.post("/admin/orders/{order_id}/notify")
def notify_customer(order_id: str, user: dict = Depends(requires("notifications:send")), whatsapp: WhatsAppClient = Depends(get_whatsapp)):
    order = orders.get_order(order_id)["order"]
    customer = users.get_user(order["customer_id"])
    name = f"{customer['first_name']} {customer['last_name']}"
    result = send_order_notification(
        whatsapp,
        customer["phone"],
        name,
        order["order_number"],
        order["status"],
        total_amount=order["final_amount"],
        pickup_date=order["requested_date_time"],
        delivery_date=order.get("confirmed_date_time") or "",
    )
    return ok(result, "Notification sent")


# ===================== Payments =====================
class InitializePaymentRequest(BaseModel):
    order_id: str
    email: EmailStr
    callback_url: Optional[str] = None


class VerifyPaymentRequest(BaseModel):
    order_id: str
    reference: Optional[str] = None


@app.post("/payments/initialize")
def initialize_payment(payload: InitializePaymentRequest, user: dict = Depends(current_user), paystack: PaystackClient = Depends(get_paystack)):
    orders.get_order_for_user(payload.order_id, user)
    result = payments.initialize_payment(
        payload.order_id,
        payload.email,
        payload.callback_url,
        client=paystack,
        customer_name=f"{user['first_name']} {user['last_name']}",
        customer_phone=user.get("phone"),
    )
    return ok(result)


@app.post("/payments/verify")
def verify_payment(payload: VerifyPaymentRequest, user: dict = Depends(current_user), paystack: PaystackClient = Depends(get_paystack)):
    if not users.is_staff(user):
        users.require_capability(user, "payments:verify")
    orders.get_order_for_user(payload.order_id, user)
    result = payments.reconcile_payment(payload.order_id, payload.reference, client=paystack)
    return ok(result, result["message"])


@app.get("/payments/callback")
def payment_callback(request: Request, order_id: Optional[str] = None, wait: bool = False, user: dict = Depends(current_user), paystack: PaystackClient = Depends(get_paystack)):
    params = dict(request.query_params)
    reference = payments.extract_reference(params)
    order_id = order_id or payments.order_id_from_reference(reference)
    if not order_id:
        raise InvalidRequestError("Payment reference not found")
    orders.get_order_for_user(order_id, user)
    if wait and reference:
        # keep checking while Paystack still reports the charge as pending
        result = payments.poll_payment(order_id, reference, client=paystack)
    else:
        result = payments.reconcile_payment(order_id, reference, client=paystack)
    return ok(result, result["message"])


@app.get("/payments/banks")
def list_banks(paystack: PaystackClient = Depends(get_paystack)):
    return ok(paystack.list_banks())


@app.post("/webhooks/paystack")
async def paystack_webhook(request: Request, x_paystack_signature: Optional[str] = Header(None), whatsapp: WhatsAppClient = Depends(get_whatsapp)):
    body = await request.body()
    event = await run_in_threadpool(payments.handle_webhook, body, x_paystack_signature, notifier=whatsapp)
    return {"status": "success", "event": event}


# ===================== Analytics =====================
@app.get("/admin/analytics")
def analytics_report(start_date: str, end_date: str, period: str = "daily", user: dict = Depends(requires("analytics:read"))):
    return ok(analytics.generate_report(start_date, end_date, period))


@app.get("/admin/analytics/export", response_class=PlainTextResponse)
def analytics_export(kind: str, start_date: str, end_date: str, period: str = "daily", user: dict = Depends(requires("analytics:read"))):
    report = analytics.generate_report(start_date, end_date, period)
    return PlainTextResponse(analytics.export_csv(kind, report), media_type="text/csv")


# ===================== Schema Export for Docs =====================
@app.get("/schema")
def get_schema():
    return {
        "collections": [
            "user",
            "service",
            "order",
            "orderitem",
            "timeslot"
        ],
        "notes": "Each class in schemas.py maps to a MongoDB collection (lowercase)."
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
