"""
Customer notifications over the WhatsApp Business API.

Messages are sent on demand at known points of the order lifecycle; a status
change does not send anything by itself.
"""
import logging
import re
from typing import Any, Dict, List, Optional

import requests

import config
from errors import ConfigurationError, ExternalServiceError, InvalidRequestError
from pricing import format_naira

logger = logging.getLogger(__name__)


def format_phone_for_whatsapp(phone: str) -> str:
    """Normalise a Nigerian number to the 234XXXXXXXXXX form WhatsApp expects."""
    cleaned = re.sub(r"[^\d+]", "", phone)
    if cleaned.startswith("+234"):
        return cleaned[1:]
    if cleaned.startswith("234"):
        return cleaned
    if cleaned.startswith("0"):
        return "234" + cleaned[1:]
    return "234" + cleaned.lstrip("+")


def is_valid_whatsapp_number(phone: str) -> bool:
    return re.fullmatch(r"234[789]\d{9}", format_phone_for_whatsapp(phone)) is not None


class WhatsAppClient:
    def __init__(self, access_token: Optional[str] = None, phone_number_id: Optional[str] = None, base_url: Optional[str] = None, timeout: int = 30):
        self.access_token = config.WHATSAPP_ACCESS_TOKEN if access_token is None else access_token
        self.phone_number_id = config.WHATSAPP_PHONE_NUMBER_ID if phone_number_id is None else phone_number_id
        self.base_url = (base_url or config.WHATSAPP_BASE_URL).rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.access_token and self.phone_number_id)

    def _send(self, payload: Dict[str, Any]) -> dict:
        if not self.configured:
            logger.warning("WhatsApp access token not configured")
            raise ConfigurationError("WhatsApp service not configured")
        url = f"{self.base_url}/{self.phone_number_id}/messages"
        try:
            response = requests.post(
                url,
                headers={
                    "Authorization": f"Bearer {self.access_token}",
                    "Content-Type": "application/json",
                },
                json={"messaging_product": "whatsapp", **payload},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"WhatsApp request failed: {e}")
            raise ExternalServiceError(f"Failed to send WhatsApp message: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not response.ok or not body.get("messages"):
            logger.warning(f"WhatsApp rejected message ({response.status_code}): {body}")
            raise ExternalServiceError("Failed to send WhatsApp message")
        return body

    def send_text(self, to: str, message: str) -> dict:
        return self._send({
            "to": format_phone_for_whatsapp(to),
            "type": "text",
            "text": {"body": message},
        })

    def send_template(self, to: str, template_name: str, parameters: Optional[List[str]] = None, language: str = "en") -> dict:
        template = {"name": template_name, "language": {"code": language}}
        if parameters:
            template["components"] = [{
                "type": "body",
                "parameters": [{"type": "text", "text": p} for p in parameters],
            }]
        return self._send({
            "to": format_phone_for_whatsapp(to),
            "type": "template",
            "template": template,
        })


# Message bodies

def order_confirmation_message(name: str, order_number: str, total_amount: int = 0, pickup_date: str = "") -> str:
    return (
        f"Hi {name}!\n\n"
        f"Your order #{order_number} has been confirmed at {config.BUSINESS_NAME}.\n\n"
        f"Total Amount: {format_naira(total_amount)}\n"
        f"Pickup Date: {pickup_date}\n\n"
        "We'll send you updates as your order progresses."
    )


def pickup_message(name: str, order_number: str, **_) -> str:
    return (
        f"Hi {name}!\n\n"
        "Great news! Your laundry has been picked up.\n\n"
        f"Order #{order_number}\n"
        "Status: Picked up and heading to our facility\n\n"
        f"Track your order: {config.BUSINESS_URL}/orders/{order_number}"
    )


def processing_message(name: str, order_number: str, **_) -> str:
    return (
        f"Hi {name}!\n\n"
        "Your laundry is now being processed.\n\n"
        f"Order #{order_number}\n"
        "Status: In Progress"
    )


def ready_message(name: str, order_number: str, delivery_date: str = "", **_) -> str:
    return (
        f"Hi {name}!\n\n"
        "Your laundry is ready for delivery.\n\n"
        f"Order #{order_number}\n"
        f"Scheduled Delivery: {delivery_date}\n\n"
        "Please ensure someone is available to receive your clean clothes."
    )


def delivered_message(name: str, order_number: str, **_) -> str:
    return (
        f"Hi {name}!\n\n"
        "Your order has been successfully delivered!\n\n"
        f"Order #{order_number}\n\n"
        f"Thank you for choosing {config.BUSINESS_NAME}.\n"
        f"Book again: {config.BUSINESS_URL}/book"
    )


def payment_reminder_message(name: str, order_number: str, amount: int = 0, payment_url: Optional[str] = None, **_) -> str:
    pay_line = f"Pay now: {payment_url}" if payment_url else "Please complete payment to proceed with your order."
    return (
        f"Hi {name}!\n\n"
        "Payment reminder for your order.\n\n"
        f"Order #{order_number}\n"
        f"Amount Due: {format_naira(amount)}\n\n"
        f"{pay_line}"
    )


STATUS_MESSAGES = {
    "picked_up": pickup_message,
    "in_progress": processing_message,
    "ready": ready_message,
    "delivered": delivered_message,
}


def build_status_message(status: str, name: str, order_number: str, **extra) -> str:
    if status in ("pending", "confirmed"):
        return order_confirmation_message(
            name,
            order_number,
            total_amount=extra.get("total_amount", 0),
            pickup_date=extra.get("pickup_date", ""),
        )
    builder = STATUS_MESSAGES.get(status)
    if builder is None:
        raise InvalidRequestError(f"No notification template for status '{status}'")
    return builder(name, order_number, **extra)


def send_order_notification(client: WhatsAppClient, phone: str, name: str, order_number: str, status: str, **extra) -> dict:
    message = build_status_message(status, name, order_number, **extra)
    result = client.send_text(phone, message)
    logger.info(f"Sent '{status}' notification for order {order_number}")
    return result
