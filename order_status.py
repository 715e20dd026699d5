"""
Order lifecycle state machine.

Every accepted transition is one conditional write against the order's
`version`: status, timestamps and the new history entry land together or
not at all, and a concurrent writer gets a ConcurrencyError instead of
silently losing a history entry.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from database import get_document_by_id, update_document_versioned
from errors import ConcurrencyError, InvalidRequestError, InvalidTransitionError, NotFoundError
from schemas import ORDER_STATUSES

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

VALID_STATUS_TRANSITIONS = {
    "pending": ("picked_up", "confirmed", "cancelled"),
    "picked_up": ("confirmed", "in_progress", "cancelled"),
    "confirmed": ("picked_up", "in_progress", "cancelled"),
    "in_progress": ("ready", "cancelled"),
    "ready": ("delivered", "cancelled"),
    "delivered": (),
    "cancelled": (),
}

NEXT_ACTION = {
    "pending": "picked_up",
    "picked_up": "in_progress",
    "confirmed": "in_progress",
    "in_progress": "ready",
    "ready": "delivered",
}

TERMINAL_STATUSES = ("delivered", "cancelled")


def can_transition(current: str, new_status: str) -> bool:
    return new_status in VALID_STATUS_TRANSITIONS.get(current, ())


def next_status(current: str) -> Optional[str]:
    return NEXT_ACTION.get(current)


def available_actions(current: str) -> list:
    """Statuses a staff member should be offered for an order in `current`."""
    if current in TERMINAL_STATUSES:
        return []
    actions = []
    if current in NEXT_ACTION:
        actions.append(NEXT_ACTION[current])
    actions.append("cancelled")
    return actions


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def history_entry(status: str, actor_id: Optional[str] = None, notes: Optional[str] = None, timestamp: Optional[str] = None) -> dict:
    return {
        "status": status,
        "timestamp": timestamp or now_iso(),
        "actor_id": actor_id,
        "notes": notes,
    }


def status_update(order: dict, new_status: str, actor_id: Optional[str], notes: Optional[str] = None):
    """
    Build the `$set` fields and `$push` clause for moving `order` to `new_status`.
    Raises InvalidTransitionError when the state machine does not allow it.
    """
    if new_status not in ORDER_STATUSES:
        raise InvalidRequestError(f"'{new_status}' is not a valid order status.")
    if not can_transition(order["status"], new_status):
        raise InvalidTransitionError(f"Cannot transition order from {order['status']} to {new_status}.")

    timestamp = now_iso()
    set_fields = {"status": new_status}
    if actor_id and actor_id != SYSTEM_ACTOR:
        set_fields["assigned_staff_id"] = actor_id
    if new_status == "ready":
        set_fields["actual_pickup_time"] = timestamp
    elif new_status == "delivered":
        set_fields["actual_delivery_time"] = timestamp
    push = {"history": history_entry(new_status, actor_id, notes, timestamp)}
    return set_fields, push


def transition_order(order_id: str, new_status: str, actor_id: str, notes: Optional[str] = None, expected_version: Optional[int] = None) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFoundError("Order not found")

    version = order.get("version", 0)
    if expected_version is not None and expected_version != version:
        raise ConcurrencyError("Order was updated by someone else. Reload and try again.")

    set_fields, push = status_update(order, new_status, actor_id, notes)
    updated = update_document_versioned("order", order_id, version, set_fields, push=push)
    if updated is None:
        raise ConcurrencyError("Order was updated by someone else. Reload and try again.")

    logger.info(f"Order {order.get('order_number')} moved {order['status']} -> {new_status} by {actor_id}")
    return updated
