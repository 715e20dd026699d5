import pytest

import order_status
from errors import ConcurrencyError, InvalidRequestError, InvalidTransitionError, NotFoundError
from order_status import available_actions, can_transition, status_update, transition_order


@pytest.fixture
def order(mongo_db, customer):
    result = mongo_db["order"].insert_one({
        "order_number": "GAB240601123456",
        "customer_id": customer["_id"],
        "status": "pending",
        "payment_status": "pending",
        "final_amount": 150000,
        "history": [{"status": "pending", "timestamp": "2024-06-01T08:00:00+00:00", "actor_id": customer["_id"], "notes": "Order created"}],
        "version": 0,
        "items_pending": False,
    })
    return str(result.inserted_id)


@pytest.mark.parametrize("current, new, allowed", [
    ("pending", "picked_up", True),
    ("pending", "confirmed", True),
    ("picked_up", "confirmed", True),
    ("confirmed", "picked_up", True),
    ("confirmed", "in_progress", True),
    ("in_progress", "ready", True),
    ("ready", "delivered", True),
    ("ready", "cancelled", True),
    ("pending", "delivered", False),
    ("in_progress", "pending", False),
    ("delivered", "cancelled", False),
    ("cancelled", "pending", False),
])
def test_transition_table(current, new, allowed):
    assert can_transition(current, new) is allowed


def test_available_actions():
    assert available_actions("pending") == ["picked_up", "cancelled"]
    assert available_actions("ready") == ["delivered", "cancelled"]
    assert available_actions("delivered") == []
    assert available_actions("cancelled") == []


def test_status_update_stamps_times():
    set_fields, push = status_update({"status": "in_progress"}, "ready", "staff-1")
    assert set_fields["status"] == "ready"
    assert set_fields["assigned_staff_id"] == "staff-1"
    assert set_fields["actual_pickup_time"] == push["history"]["timestamp"]

    set_fields, _ = status_update({"status": "ready"}, "delivered", order_status.SYSTEM_ACTOR)
    assert "actual_delivery_time" in set_fields
    assert "assigned_staff_id" not in set_fields


def test_status_update_rejects_unknown_status():
    with pytest.raises(InvalidRequestError):
        status_update({"status": "pending"}, "washed", "staff-1")


def test_transition_appends_history(order, staff):
    updated = transition_order(order, "picked_up", staff["_id"], notes="Collected at gate")
    assert updated["status"] == "picked_up"
    assert updated["version"] == 1
    assert updated["assigned_staff_id"] == staff["_id"]
    assert [h["status"] for h in updated["history"]] == ["pending", "picked_up"]
    assert updated["history"][-1]["notes"] == "Collected at gate"
    assert updated["history"][-1]["actor_id"] == staff["_id"]


def test_full_lifecycle(order, staff):
    for status in ("picked_up", "confirmed", "in_progress", "ready", "delivered"):
        updated = transition_order(order, status, staff["_id"])
    assert updated["version"] == 5
    assert updated["actual_pickup_time"]
    assert updated["actual_delivery_time"]
    assert len(updated["history"]) == 6


def test_illegal_transition_leaves_order_untouched(order, staff, mongo_db):
    with pytest.raises(InvalidTransitionError, match="Cannot transition order from pending to delivered"):
        transition_order(order, "delivered", staff["_id"])
    stored = mongo_db["order"].find_one({})
    assert stored["status"] == "pending"
    assert stored["version"] == 0
    assert len(stored["history"]) == 1


def test_stale_expected_version_is_rejected(order, staff):
    transition_order(order, "picked_up", staff["_id"], expected_version=0)
    with pytest.raises(ConcurrencyError):
        transition_order(order, "in_progress", staff["_id"], expected_version=0)


def test_lost_race_is_reported(order, staff, mongo_db, monkeypatch):
    real_get = order_status.get_document_by_id

    def stale_read(collection, _id):
        doc = real_get(collection, _id)
        # someone else writes between our read and our update
        mongo_db["order"].update_one({}, {"$inc": {"version": 1}})
        return doc

    monkeypatch.setattr(order_status, "get_document_by_id", stale_read)
    with pytest.raises(ConcurrencyError):
        transition_order(order, "picked_up", staff["_id"])
    assert len(mongo_db["order"].find_one({})["history"]) == 1


def test_missing_order(staff):
    with pytest.raises(NotFoundError):
        transition_order("65f000000000000000000000", "picked_up", staff["_id"])
