"""
Order creation and lookup.

An order and its line items live in two collections. The order is written
first with `items_pending=True`; the flag is cleared once every item is
stored. If storing the items fails the order is removed again, and anything
left half-written by a crash is swept up by `cleanup_incomplete_orders`.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pymongo.errors import DuplicateKeyError, PyMongoError

import config
from catalog import get_service
from database import (
    create_document,
    create_documents,
    get_documents,
    get_document_by_id,
    count_documents,
    update_document,
    delete_document,
    delete_documents,
)
from errors import AuthorizationError, ExternalServiceError, InvalidRequestError, NotFoundError
from order_status import history_entry, available_actions
from pricing import unit_price, line_total, order_totals, generate_order_number
from schemas import BookingItem, BookingRequest, Order, Orderitem
from users import is_staff

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5
LISTED = {"items_pending": False}


def price_items(requested: List[BookingItem]) -> List[dict]:
    """Price every requested line from the live catalog. Missing or inactive services abort."""
    lines = []
    for item in requested:
        service = get_document_by_id("service", item.service_id)
        if not service or not service.get("is_active", True):
            raise NotFoundError(f"Service not found: {item.service_id}")
        price = unit_price(service, item.weight)
        lines.append({
            "service_id": item.service_id,
            "service_name": service["name"],
            "quantity": item.quantity,
            "weight": item.weight,
            "unit_price": price,
            "total_price": line_total(price, item.quantity),
            "special_instructions": item.special_instructions,
        })
    return lines


def _insert_order(order: Order) -> str:
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        order.order_number = generate_order_number()
        try:
            return create_document("order", order)
        except DuplicateKeyError:
            logger.warning(f"Order number {order.order_number} already taken, generating another")
    raise ExternalServiceError("Could not allocate a unique order number")


def create_order(booking: BookingRequest) -> dict:
    if not booking.services:
        raise InvalidRequestError("At least one service is required")
    if not get_document_by_id("user", booking.customer_id):
        raise NotFoundError("Customer not found")

    lines = price_items(booking.services)
    totals = order_totals(line["total_price"] for line in lines)

    order = Order(
        order_number="",
        customer_id=booking.customer_id,
        payment_method=booking.payment_method,
        delivery_type=booking.delivery_type,
        requested_date_time=booking.requested_date_time,
        customer_notes=booking.customer_notes,
        history=[history_entry("pending", booking.customer_id, "Order created")],
        **totals,
    )
    if booking.delivery_type == "delivery":
        order.pickup_address = booking.pickup_address
        order.delivery_address = booking.delivery_address
        order.address_notes = booking.address_notes

    order_id = _insert_order(order)
    try:
        item_ids = create_documents("orderitem", [Orderitem(order_id=order_id, **line) for line in lines])
    except PyMongoError as exc:
        logger.exception(f"Storing items for order {order.order_number} failed, rolling back")
        delete_documents("orderitem", {"order_id": order_id})
        delete_document("order", order_id)
        raise ExternalServiceError("Failed to create order") from exc

    update_document("order", order_id, {"items": item_ids, "items_pending": False})
    logger.info(f"Order {order.order_number} created for customer {booking.customer_id} ({totals['final_amount']} kobo)")
    return get_order(order_id)


def get_order(order_id: str) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFoundError("Order not found")
    items = get_documents("orderitem", {"order_id": order_id})
    return {"order": order, "items": items, "actions": available_actions(order["status"])}


def get_order_for_user(order_id: str, user: dict) -> dict:
    details = get_order(order_id)
    if not is_staff(user) and details["order"]["customer_id"] != user["_id"]:
        raise AuthorizationError("You do not have access to this order")
    return details


def list_customer_orders(customer_id: str, limit: int = 20, offset: int = 0) -> dict:
    filt = {"customer_id": customer_id, **LISTED}
    documents = get_documents("order", filt, limit=limit, skip=offset, sort=[["created_at", -1]])
    return {
        "documents": documents,
        "total": count_documents("order", filt),
        "limit": limit,
        "offset": offset,
    }


def list_orders_by_status(status: str, limit: int = 50) -> list:
    return get_documents("order", {"status": status, **LISTED}, limit=limit, sort=[["created_at", -1]])


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        raise InvalidRequestError(f"Invalid date '{value}', expected YYYY-MM-DD")


def list_orders_in_range(start_date: str, end_date: str) -> list:
    """Orders created from the start of `start_date` up to the end of `end_date` (UTC)."""
    start = _parse_date(start_date)
    end = _parse_date(end_date) + timedelta(days=1)
    if end <= start:
        raise InvalidRequestError("End date must not be before start date")
    filt = {"created_at": {"$gte": start, "$lt": end}, **LISTED}
    return get_documents("order", filt, sort=[["created_at", -1]])


def list_orders_on_date(date: str) -> list:
    return list_orders_in_range(date, date)


def cleanup_incomplete_orders(older_than_minutes: Optional[int] = None) -> int:
    """Delete orders whose items were never fully stored, along with any stray items."""
    if older_than_minutes is None:
        older_than_minutes = config.INCOMPLETE_ORDER_TTL_MINUTES
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    stale = get_documents("order", {"items_pending": True, "created_at": {"$lt": cutoff}})
    for order in stale:
        delete_documents("orderitem", {"order_id": order["_id"]})
        delete_document("order", order["_id"])
    if stale:
        logger.warning(f"Removed {len(stale)} incomplete orders older than {older_than_minutes} minutes")
    return len(stale)


def estimate_delivery(services: List[dict], pickup_date: str) -> dict:
    """
    Rough turnaround estimate: service durations times quantity, plus two hours
    for every order already placed that day (at most a day of buffer).
    """
    try:
        pickup = datetime.fromisoformat(pickup_date)
    except ValueError:
        raise InvalidRequestError(f"Invalid pickup date '{pickup_date}'")
    if pickup.tzinfo is None:
        pickup = pickup.replace(tzinfo=timezone.utc)

    service_hours = 0
    for requested in services:
        service = get_service(requested["service_id"])
        service_hours += service["estimated_duration"] * requested.get("quantity", 1)

    workload = len(list_orders_on_date(pickup.date().isoformat()))
    buffer_hours = min(workload * 2, 24)
    estimated_hours = service_hours + buffer_hours
    return {
        "estimated_hours": estimated_hours,
        "delivery_date": (pickup + timedelta(hours=estimated_hours)).isoformat(),
    }
