"""
Database Schemas for the Laundry Pickup & Delivery Service

Each Pydantic model below corresponds to a MongoDB collection.
The collection name is the lowercase class name (e.g., OrderItem -> "orderitem").
All amounts are integer kobo (1 Naira = 100 kobo).
"""
import re
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator

OrderStatus = Literal["pending", "picked_up", "confirmed", "in_progress", "ready", "delivered", "cancelled"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
PaymentMethod = Literal["online", "pos", "transfer", "cash"]
DeliveryType = Literal["pickup", "delivery"]
ServiceType = Literal["laundromat", "wash_and_fold", "ironing", "dry_cleaning"]
UserRole = Literal["customer", "staff", "admin", "owner"]
ItemCondition = Literal["good", "damaged", "stained", "torn"]

ORDER_STATUSES = ("pending", "picked_up", "confirmed", "in_progress", "ready", "delivered", "cancelled")
USER_ROLES = ("customer", "staff", "admin", "owner")

NIGERIAN_PHONE_REGEX = re.compile(r"^0[789]\d{9}$")
LAGOS_LGAS = [
    'Agege', 'Ajeromi-Ifelodun', 'Alimosho', 'Amuwo-Odofin', 'Apapa',
    'Badagry', 'Epe', 'Eti Osa', 'Ibeju-Lekki', 'Ifako-Ijaiye',
    'Ikeja', 'Ikorodu', 'Kosofe', 'Lagos Island', 'Lagos Mainland',
    'Mushin', 'Ojo', 'Oshodi-Isolo', 'Shomolu', 'Surulere',
]

# 1 million naira
MAX_KOBO = 100_000_000


class Address(BaseModel):
    street: str = Field(..., min_length=5, max_length=200)
    area: str = Field(..., min_length=2, max_length=100)
    lga: Optional[str] = Field(None, description="Lagos Local Government Area")
    state: str = "Lagos State"
    landmark: Optional[str] = Field(None, max_length=200)
    postal_code: Optional[str] = Field(None, pattern=r"^\d{6}$")

    @field_validator("lga")
    @classmethod
    def lga_in_lagos(cls, v):
        if v is not None and v not in LAGOS_LGAS:
            raise ValueError("Please select a valid Lagos Local Government Area")
        return v

    def as_text(self) -> str:
        parts = [self.street, self.area, self.lga, self.state, self.landmark]
        return ", ".join(p for p in parts if p)


class User(BaseModel):
    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    phone: str = Field(..., description="Nigerian phone number, 0XXXXXXXXXX")
    is_whatsapp: bool = False
    role: UserRole = "customer"
    is_active: bool = True
    addresses: List[Address] = Field(default_factory=list, max_length=5)
    # Staff only
    assigned_areas: List[str] = Field(default_factory=list)
    employee_id: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def nigerian_phone(cls, v):
        if not NIGERIAN_PHONE_REGEX.match(v):
            raise ValueError("Invalid Nigerian phone number format. Use 0XXXXXXXXXX")
        return v


class Service(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    type: ServiceType
    description: str = Field(..., min_length=10, max_length=500)
    base_price: int = Field(..., ge=0, le=MAX_KOBO)
    price_per_kg: Optional[int] = Field(None, ge=0, le=MAX_KOBO)
    price_per_item: Optional[int] = Field(None, ge=0, le=MAX_KOBO)
    estimated_duration: int = Field(..., ge=1, le=168, description="Hours")
    is_active: bool = True
    available_areas: List[str] = Field(..., min_length=1)
    special_instructions: Optional[str] = Field(None, max_length=500)
    category: str = Field(..., min_length=2, max_length=50)
    display_order: int = Field(0, ge=0)
    min_order_value: Optional[int] = Field(None, ge=0, le=MAX_KOBO)
    max_order_value: Optional[int] = Field(None, ge=0, le=MAX_KOBO)
    tags: List[str] = Field(default_factory=list, max_length=10)


class OrderHistoryEntry(BaseModel):
    status: OrderStatus
    timestamp: str = Field(..., description="ISO 8601")
    actor_id: Optional[str] = None
    notes: Optional[str] = None


class Order(BaseModel):
    order_number: str = Field(..., description="Human-friendly order number")
    customer_id: str
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    payment_method: Optional[PaymentMethod] = None
    payment_reference: Optional[str] = None
    items: List[str] = Field(default_factory=list, description="OrderItem ids")
    total_amount: int = Field(..., ge=0, le=MAX_KOBO)
    discount_amount: int = Field(0, ge=0, le=MAX_KOBO)
    final_amount: int = Field(..., ge=0, le=MAX_KOBO)
    amount_paid: Optional[int] = Field(None, ge=0)
    delivery_type: DeliveryType
    requested_date_time: str
    confirmed_date_time: Optional[str] = None
    actual_pickup_time: Optional[str] = None
    actual_delivery_time: Optional[str] = None
    pickup_address: Optional[Address] = None
    delivery_address: Optional[Address] = None
    address_notes: Optional[str] = None
    assigned_staff_id: Optional[str] = None
    customer_notes: Optional[str] = None
    staff_notes: Optional[str] = None
    history: List[OrderHistoryEntry] = Field(default_factory=list)
    version: int = 0
    items_pending: bool = True


class Orderitem(BaseModel):
    order_id: str
    service_id: str
    service_name: str
    quantity: int = Field(..., ge=1, le=50)
    weight: Optional[float] = Field(None, ge=0.1, le=50)
    unit_price: int = Field(..., ge=0, le=MAX_KOBO)
    total_price: int = Field(..., ge=0)
    special_instructions: Optional[str] = Field(None, max_length=300)
    condition: ItemCondition = "good"
    is_completed: bool = False


class Timeslot(BaseModel):
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    start_time: str = Field(..., pattern=r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
    end_time: str = Field(..., pattern=r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
    is_available: bool = True
    max_orders: int = Field(..., ge=1, le=50)
    current_orders: int = Field(0, ge=0)
    service_areas: List[str] = Field(..., min_length=1)
    slot_type: Literal["pickup", "delivery", "both"] = "both"
    is_holiday: bool = False
    notes: Optional[str] = Field(None, max_length=300)

    @model_validator(mode="after")
    def end_after_start(self):
        start = tuple(int(p) for p in self.start_time.split(":"))
        end = tuple(int(p) for p in self.end_time.split(":"))
        if end <= start:
            raise ValueError("End time must be after start time")
        return self


# ===================== Request payloads =====================

class BookingItem(BaseModel):
    service_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, le=50)
    weight: Optional[float] = Field(None, ge=0.1, le=50)
    special_instructions: Optional[str] = Field(None, max_length=300)


class BookingRequest(BaseModel):
    customer_id: str = Field(..., min_length=1)
    services: List[BookingItem] = Field(..., min_length=1, max_length=10)
    delivery_type: DeliveryType
    requested_date_time: str = Field(..., min_length=1)
    pickup_address: Optional[Address] = None
    delivery_address: Optional[Address] = None
    address_notes: Optional[str] = Field(None, max_length=500)
    customer_notes: Optional[str] = Field(None, max_length=500)
    payment_method: PaymentMethod

    @model_validator(mode="after")
    def delivery_needs_addresses(self):
        if self.delivery_type == "delivery" and not (self.pickup_address and self.delivery_address):
            raise ValueError("Pickup and delivery addresses are required for delivery orders")
        return self


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(None, max_length=500)
    expected_version: Optional[int] = None
"""
Notes:
- The order history is stored as a native array and only grows through
  versioned `$push` updates (see order_status.transition_order).
"""
