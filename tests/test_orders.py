from datetime import datetime, timedelta, timezone
from unittest import mock

import pytest
from pydantic import ValidationError
from pymongo.errors import PyMongoError

import orders
from errors import AuthorizationError, ExternalServiceError, NotFoundError
from schemas import BookingRequest

ADDRESS = {"street": "12 Admiralty Way", "area": "Lekki", "lga": "Eti Osa"}


def booking(customer_id, services, **extra):
    data = {
        "customer_id": customer_id,
        "services": services,
        "delivery_type": "pickup",
        "requested_date_time": "2024-06-01T09:00:00+01:00",
        "payment_method": "online",
    }
    data.update(extra)
    return BookingRequest(**data)


def test_create_order_prices_from_catalog(customer, wash_service):
    details = orders.create_order(booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 2}]))
    order = details["order"]

    assert order["total_amount"] == 300000
    assert order["final_amount"] == 300000
    assert order["status"] == "pending"
    assert order["payment_status"] == "pending"
    assert order["items_pending"] is False
    assert order["version"] == 0
    assert order["order_number"].startswith("GAB")
    assert [h["status"] for h in order["history"]] == ["pending"]
    assert order["history"][0]["notes"] == "Order created"

    assert len(details["items"]) == 1
    item = details["items"][0]
    assert item["unit_price"] == 150000
    assert item["total_price"] == 300000
    assert item["service_name"] == "Basic Wash & Fold"
    assert order["items"] == [item["_id"]]
    assert details["actions"] == ["picked_up", "cancelled"]


def test_per_item_price_wins_over_weight(customer, item_service):
    details = orders.create_order(booking(
        customer["_id"], [{"service_id": item_service["_id"], "quantity": 3, "weight": 2.0}]))
    assert details["items"][0]["unit_price"] == 15000
    assert details["order"]["final_amount"] == 45000


def test_empty_booking_is_rejected(customer):
    with pytest.raises(ValidationError):
        booking(customer["_id"], [])


def test_delivery_requires_addresses(customer, wash_service):
    with pytest.raises(ValidationError, match="addresses are required"):
        booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}], delivery_type="delivery")


def test_delivery_order_keeps_addresses(customer, wash_service):
    details = orders.create_order(booking(
        customer["_id"],
        [{"service_id": wash_service["_id"], "quantity": 1}],
        delivery_type="delivery",
        pickup_address=ADDRESS,
        delivery_address=ADDRESS,
        address_notes="Gate 2",
    ))
    assert details["order"]["pickup_address"]["area"] == "Lekki"
    assert details["order"]["address_notes"] == "Gate 2"


def test_unknown_service_aborts_without_writing(customer, mongo_db):
    missing = "65f000000000000000000000"
    with pytest.raises(NotFoundError, match=f"Service not found: {missing}"):
        orders.create_order(booking(customer["_id"], [{"service_id": missing, "quantity": 1}]))
    assert mongo_db["order"].count_documents({}) == 0


def test_unknown_customer(wash_service):
    with pytest.raises(NotFoundError, match="Customer not found"):
        orders.create_order(booking("65f000000000000000000000", [{"service_id": wash_service["_id"], "quantity": 1}]))


def test_failed_item_write_rolls_back_order(customer, wash_service, mongo_db):
    with mock.patch.object(orders, "create_documents", side_effect=PyMongoError("disk full")):
        with pytest.raises(ExternalServiceError, match="Failed to create order"):
            orders.create_order(booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}]))
    assert mongo_db["order"].count_documents({}) == 0
    assert mongo_db["orderitem"].count_documents({}) == 0


def test_order_number_collision_is_retried(customer, wash_service):
    numbers = iter(["GAB240601000001", "GAB240601000001", "GAB240601000002"])
    request = booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}])
    with mock.patch.object(orders, "generate_order_number", side_effect=lambda: next(numbers)):
        first = orders.create_order(request)
        second = orders.create_order(request)
    assert first["order"]["order_number"] == "GAB240601000001"
    assert second["order"]["order_number"] == "GAB240601000002"


def test_order_number_gives_up(customer, wash_service):
    request = booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}])
    with mock.patch.object(orders, "generate_order_number", return_value="GAB240601000009"):
        orders.create_order(request)
        with pytest.raises(ExternalServiceError, match="unique order number"):
            orders.create_order(request)


def test_customer_listing_is_paginated(customer, wash_service):
    request = booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}])
    numbers = iter(f"GAB2406010000{i:02d}" for i in range(10))
    with mock.patch.object(orders, "generate_order_number", side_effect=lambda: next(numbers)):
        for _ in range(3):
            orders.create_order(request)

    page = orders.list_customer_orders(customer["_id"], limit=2, offset=0)
    assert page["total"] == 3
    assert len(page["documents"]) == 2
    rest = orders.list_customer_orders(customer["_id"], limit=2, offset=2)
    assert len(rest["documents"]) == 1


def test_customer_cannot_read_someone_elses_order(customer, user_factory, wash_service, staff):
    details = orders.create_order(booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}]))
    other = user_factory("customer", email="other@example.com")
    with pytest.raises(AuthorizationError):
        orders.get_order_for_user(details["order"]["_id"], other)
    assert orders.get_order_for_user(details["order"]["_id"], staff)["order"]["_id"] == details["order"]["_id"]


def test_get_missing_order():
    with pytest.raises(NotFoundError):
        orders.get_order("65f000000000000000000000")


def test_listing_by_status_and_date(customer, wash_service):
    details = orders.create_order(booking(customer["_id"], [{"service_id": wash_service["_id"], "quantity": 1}]))
    today = datetime.now(timezone.utc).date().isoformat()

    assert [o["_id"] for o in orders.list_orders_by_status("pending")] == [details["order"]["_id"]]
    assert orders.list_orders_by_status("delivered") == []
    assert len(orders.list_orders_on_date(today)) == 1
    assert orders.list_orders_in_range("2000-01-01", "2000-01-31") == []


def test_cleanup_removes_stale_incomplete_orders(customer, mongo_db):
    old = datetime.now(timezone.utc) - timedelta(hours=1)
    result = mongo_db["order"].insert_one({
        "order_number": "GAB240601999999",
        "customer_id": customer["_id"],
        "status": "pending",
        "items_pending": True,
        "created_at": old,
    })
    order_id = str(result.inserted_id)
    mongo_db["orderitem"].insert_one({"order_id": order_id, "service_id": "x", "quantity": 1})
    mongo_db["order"].insert_one({
        "order_number": "GAB240601888888",
        "customer_id": customer["_id"],
        "status": "pending",
        "items_pending": True,
        "created_at": datetime.now(timezone.utc),
    })

    assert orders.list_customer_orders(customer["_id"])["total"] == 0
    assert orders.cleanup_incomplete_orders(older_than_minutes=15) == 1
    assert mongo_db["order"].count_documents({}) == 1
    assert mongo_db["orderitem"].count_documents({}) == 0


def test_estimate_delivery(customer, wash_service, item_service):
    estimate = orders.estimate_delivery(
        [{"service_id": wash_service["_id"], "quantity": 1}, {"service_id": item_service["_id"], "quantity": 2}],
        "2030-01-10T09:00:00+00:00",
    )
    assert estimate["estimated_hours"] == 24 + 12 * 2
    assert estimate["delivery_date"] == "2030-01-12T09:00:00+00:00"
