"""
Service catalog: what can be booked, where, and at what price.
"""
import logging
from typing import Optional

from database import create_document, get_documents, get_document_by_id, update_document, count_documents
from errors import NotFoundError
from schemas import Service

logger = logging.getLogger(__name__)

DEFAULT_SERVICES = [
    {
        "name": "Basic Wash & Fold",
        "type": "wash_and_fold",
        "description": "Professional washing, drying, and folding service for everyday clothing",
        "base_price": 150000,
        "price_per_kg": 50000,
        "estimated_duration": 24,
        "available_areas": ["Ikeja", "Victoria Island", "Lekki", "Surulere", "Yaba"],
        "category": "Basic Services",
        "display_order": 1,
        "min_order_value": 100000,
        "max_order_value": 5000000,
        "tags": ["wash", "fold", "basic", "everyday"],
    },
    {
        "name": "Premium Dry Cleaning",
        "type": "dry_cleaning",
        "description": "Professional dry cleaning for delicate fabrics and formal wear",
        "base_price": 300000,
        "price_per_item": 200000,
        "estimated_duration": 48,
        "available_areas": ["Victoria Island", "Ikoyi", "Lekki", "Ikeja GRA"],
        "category": "Premium Services",
        "display_order": 2,
        "min_order_value": 200000,
        "max_order_value": 10000000,
        "tags": ["dry-clean", "premium", "formal", "delicate"],
    },
    {
        "name": "Express Laundry",
        "type": "wash_and_fold",
        "description": "Same-day laundry service for urgent needs",
        "base_price": 250000,
        "price_per_kg": 75000,
        "estimated_duration": 8,
        "available_areas": ["Victoria Island", "Lekki", "Ikeja"],
        "category": "Express Services",
        "display_order": 3,
        "tags": ["express", "same-day", "urgent"],
    },
    {
        "name": "Professional Ironing",
        "type": "ironing",
        "description": "Expert ironing and pressing service for a crisp finish",
        "base_price": 100000,
        "price_per_item": 15000,
        "estimated_duration": 12,
        "available_areas": ["Ikeja", "Victoria Island", "Surulere", "Yaba", "Lekki"],
        "category": "Specialized Services",
        "display_order": 4,
        "tags": ["ironing", "pressing"],
    },
    {
        "name": "Laundromat Self-Service",
        "type": "laundromat",
        "description": "Access to our self-service laundromat with high-quality machines",
        "base_price": 80000,
        "price_per_item": 50000,
        "estimated_duration": 3,
        "available_areas": ["Ikeja", "Surulere"],
        "category": "Self-Service",
        "display_order": 5,
        "tags": ["self-service", "laundromat"],
    },
]


def create_service(service: Service) -> str:
    service_id = create_document("service", service)
    logger.info(f"Created service {service.name} ({service_id})")
    return service_id


def list_active_services(area: Optional[str] = None, service_type: Optional[str] = None) -> list:
    filt = {"is_active": True}
    if area:
        filt["available_areas"] = area
    if service_type:
        filt["type"] = service_type
    return get_documents("service", filt, sort=[["display_order", 1]])


def get_service(service_id: str) -> dict:
    service = get_document_by_id("service", service_id)
    if not service:
        raise NotFoundError(f"Service with ID {service_id} not found")
    return service


def update_service(service_id: str, updates: dict) -> dict:
    if not update_document("service", service_id, updates):
        raise NotFoundError(f"Service with ID {service_id} not found")
    return get_service(service_id)


def seed_services() -> int:
    """Insert the default catalog when the collection is empty. Returns the number created."""
    if count_documents("service") > 0:
        return 0
    for data in DEFAULT_SERVICES:
        create_service(Service(**data))
    return len(DEFAULT_SERVICES)
