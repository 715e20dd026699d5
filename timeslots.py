"""
Capacity-limited scheduling buckets. Booking does not use them yet; staff can
still publish slots and reserve capacity in them.
"""
import logging
from typing import List

from database import create_document, get_documents, get_document_by_id, get_collection, serialize_doc, to_object_id
from errors import InvalidRequestError, NotFoundError, ConcurrencyError
from pymongo import ReturnDocument
from schemas import Timeslot

logger = logging.getLogger(__name__)


def create_time_slots(slots: List[Timeslot]) -> List[str]:
    ids = []
    for slot in slots:
        data = slot.model_dump()
        data["current_orders"] = 0
        data["is_available"] = True
        ids.append(create_document("timeslot", data))
    return ids


def available_time_slots(date: str, area: str, slot_type: str = "both") -> list:
    filt = {"date": date, "is_available": True, "service_areas": area}
    if slot_type != "both":
        filt["slot_type"] = slot_type
    slots = get_documents("timeslot", filt, sort=[["start_time", 1]])
    return [s for s in slots if s.get("current_orders", 0) < s.get("max_orders", 0)]


def book_time_slot(slot_id: str) -> dict:
    slot = get_document_by_id("timeslot", slot_id)
    if not slot:
        raise NotFoundError("Time slot not found")
    current = slot.get("current_orders", 0)
    if current >= slot["max_orders"]:
        raise InvalidRequestError("Time slot is fully booked")

    # Only succeeds if nobody booked the slot since we read it
    updated = get_collection("timeslot").find_one_and_update(
        {"_id": to_object_id(slot_id), "current_orders": current},
        {"$inc": {"current_orders": 1}, "$set": {"is_available": current + 1 < slot["max_orders"]}},
        return_document=ReturnDocument.AFTER,
    )
    if not updated:
        raise ConcurrencyError("Time slot changed while booking, please try again")
    logger.info(f"Booked time slot {slot_id} ({current + 1}/{slot['max_orders']})")
    return serialize_doc(updated)
