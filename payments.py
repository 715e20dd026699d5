"""
Payment reconciliation.

After the customer comes back from the Paystack checkout (or Paystack calls
the webhook) the transaction is verified and, on success, the order is
marked paid and confirmed in a single versioned write, so an order can no
longer end up paid but still pending.
"""
import json
import logging
import time
from typing import Callable, Mapping, Optional

import config
from database import get_document_by_id, update_document_versioned, update_document
from errors import (
    AppError,
    ConcurrencyError,
    ExternalServiceError,
    InvalidRequestError,
    NotFoundError,
)
from notifications import WhatsAppClient, send_order_notification
from order_status import SYSTEM_ACTOR, can_transition, status_update
from paystack import PaystackClient, generate_reference, order_id_from_reference, verify_signature

logger = logging.getLogger(__name__)

MAX_WRITE_ATTEMPTS = 3
PAID_NOTE = "Payment confirmed - Order ready for processing"


def extract_reference(params: Mapping) -> Optional[str]:
    """Paystack appends `reference` (and the legacy `trxref`) to the callback URL."""
    return params.get("reference") or params.get("trxref") or None


def _load_order(order_id: str) -> dict:
    order = get_document_by_id("order", order_id)
    if not order:
        raise NotFoundError("Order not found")
    return order


def initialize_payment(order_id: str, email: str, callback_url: Optional[str] = None, client: Optional[PaystackClient] = None, customer_name: Optional[str] = None, customer_phone: Optional[str] = None) -> dict:
    client = client or PaystackClient()
    order = _load_order(order_id)
    if order["payment_status"] == "paid":
        raise InvalidRequestError("Order has already been paid")
    if order["status"] == "cancelled":
        raise InvalidRequestError("Cannot pay for a cancelled order")

    reference = generate_reference(order_id)
    metadata = {
        "order_id": order_id,
        "customer_id": order["customer_id"],
        "order_number": order["order_number"],
        "customer_name": customer_name,
        "customer_phone": customer_phone,
    }
    result = client.initialize_transaction(
        email=email,
        amount=order["final_amount"],
        reference=reference,
        callback_url=callback_url or config.PAYMENT_CALLBACK_URL,
        metadata=metadata,
    )
    update_document("order", order_id, {"payment_reference": result["reference"], "payment_method": "online"})
    logger.info(f"Initialized payment {result['reference']} for order {order['order_number']}")
    return result


def apply_successful_payment(order_id: str, reference: str, amount: int, actor_id: str = SYSTEM_ACTOR, notes: str = PAID_NOTE) -> dict:
    """
    Record a verified payment and confirm the order in one write.

    Already-paid orders are returned unchanged. The status only moves to
    `confirmed` where the state machine allows it; an order that is already
    further along just gets its payment recorded.
    """
    for _ in range(MAX_WRITE_ATTEMPTS):
        order = _load_order(order_id)
        if order["payment_status"] == "paid":
            if order.get("payment_reference") != reference:
                logger.warning(f"Order {order_id} already paid with {order.get('payment_reference')}, ignoring {reference}")
            return order

        if amount < order["final_amount"]:
            logger.warning(f"Order {order_id} paid {amount} kobo, expected {order['final_amount']}")

        set_fields = {"payment_status": "paid", "payment_reference": reference, "amount_paid": amount}
        push = None
        if can_transition(order["status"], "confirmed"):
            status_fields, push = status_update(order, "confirmed", actor_id, notes)
            set_fields.update(status_fields)

        updated = update_document_versioned("order", order_id, order.get("version", 0), set_fields, push=push)
        if updated is not None:
            logger.info(f"Order {order['order_number']} paid ({amount} kobo, ref {reference}), status {updated['status']}")
            return updated
        logger.info(f"Order {order_id} changed while recording payment, retrying")
    raise ConcurrencyError("Could not record payment, order keeps changing. Try again.")


def mark_payment_failed(order_id: str, reference: Optional[str]) -> dict:
    for _ in range(MAX_WRITE_ATTEMPTS):
        order = _load_order(order_id)
        if order["payment_status"] == "paid":
            return order
        set_fields = {"payment_status": "failed", "amount_paid": 0}
        if reference:
            set_fields["payment_reference"] = reference
        updated = update_document_versioned("order", order_id, order.get("version", 0), set_fields)
        if updated is not None:
            logger.info(f"Payment failed for order {order['order_number']} (ref {reference})")
            return updated
    raise ConcurrencyError("Could not record failed payment, order keeps changing. Try again.")


def reconcile_payment(order_id: str, reference: Optional[str], client: Optional[PaystackClient] = None) -> dict:
    """
    Verify `reference` with Paystack and apply the result to the order.

    Returns `{"verified", "retry", "message", "gateway_status", "order"}`.
    `retry` is true whenever the order is left pending and the customer
    should be offered another verification attempt.
    """
    client = client or PaystackClient()
    order = _load_order(order_id)

    if not reference:
        return _result(False, order, "Payment reference not found")
    if order["payment_status"] == "paid" and order.get("payment_reference") == reference:
        return _result(True, order, "Payment already confirmed", gateway_status="success")

    ref_order_id = order_id_from_reference(reference)
    if ref_order_id and ref_order_id != order_id:
        raise InvalidRequestError("Payment reference does not belong to this order")

    try:
        data = client.verify_transaction(reference)
        if not isinstance(data, dict):
            raise ExternalServiceError("Unexpected response from payment gateway")
    except ExternalServiceError as e:
        logger.warning(f"Verification of {reference} for order {order_id} failed: {e.message}")
        return _result(False, order, e.message)

    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    if metadata.get("order_id") and metadata["order_id"] != order_id:
        raise InvalidRequestError("Payment reference does not belong to this order")

    gateway_status = data.get("status")
    if gateway_status != "success":
        logger.info(f"Payment {reference} for order {order_id} is {gateway_status}")
        return _result(False, order, f"Payment {gateway_status or 'not completed'}", gateway_status=gateway_status)

    updated = apply_successful_payment(order_id, reference, int(data.get("amount") or 0))
    return _result(True, updated, "Payment verified", gateway_status=gateway_status)


def _result(verified: bool, order: dict, message: str, gateway_status: Optional[str] = None) -> dict:
    return {
        "verified": verified,
        "retry": not verified and order["payment_status"] == "pending",
        "message": message,
        "gateway_status": gateway_status,
        "order": order,
    }


def poll_payment(order_id: str, reference: str, client: Optional[PaystackClient] = None, interval: Optional[float] = None, max_attempts: Optional[int] = None, sleep: Callable[[float], None] = time.sleep) -> dict:
    """
    Re-verify every `interval` seconds while the payment is still pending, at
    most `max_attempts` times. Backs `GET /payments/callback?wait=true`.
    """
    interval = config.PAYMENT_POLL_INTERVAL if interval is None else interval
    max_attempts = config.PAYMENT_POLL_ATTEMPTS if max_attempts is None else max_attempts
    client = client or PaystackClient()

    result = None
    for attempt in range(1, max_attempts + 1):
        result = reconcile_payment(order_id, reference, client=client)
        if result["verified"] or result["order"]["payment_status"] != "pending":
            return result
        if attempt < max_attempts:
            sleep(interval)
    logger.info(f"Gave up polling payment {reference} for order {order_id} after {max_attempts} attempts")
    return result


# Webhook

def _webhook_order_id(data: dict) -> Optional[str]:
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    return metadata.get("order_id") or order_id_from_reference(data.get("reference"))


def handle_webhook(body: bytes, signature: Optional[str], secret: Optional[str] = None, notifier: Optional[WhatsAppClient] = None) -> str:
    """Verify and apply a Paystack webhook. Returns the event name."""
    secret = config.PAYSTACK_SECRET_KEY if secret is None else secret
    if not signature:
        logger.warning("Paystack webhook without signature")
        raise InvalidRequestError("Missing signature")
    if not verify_signature(body, signature, secret):
        logger.warning("Paystack webhook with invalid signature")
        raise InvalidRequestError("Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise InvalidRequestError("Malformed webhook body")
    name = event.get("event")
    data = event.get("data") or {}
    logger.info(f"Paystack webhook {name} for {data.get('reference')}")

    if name == "charge.success":
        order_id = _webhook_order_id(data)
        if not order_id:
            logger.error(f"No order id in metadata or reference {data.get('reference')}")
            return name
        order = apply_successful_payment(order_id, data.get("reference"), int(data.get("amount") or 0))
        _notify_pickup(data, order, notifier)
    elif name == "charge.failed":
        order_id = _webhook_order_id(data)
        if not order_id:
            logger.error(f"No order id in metadata or reference {data.get('reference')}")
            return name
        mark_payment_failed(order_id, data.get("reference"))
    elif name in ("transfer.success", "transfer.failed"):
        logger.info(f"Transfer event {name}: {data.get('reference')}")
    else:
        logger.warning(f"Unhandled Paystack event: {name}")
    return name


def _notify_pickup(data: dict, order: dict, notifier: Optional[WhatsAppClient]):
    metadata = data.get("metadata") if isinstance(data.get("metadata"), dict) else {}
    phone = metadata.get("customer_phone")
    name = metadata.get("customer_name")
    if not (phone and name):
        logger.info(f"No customer phone/name for order {order['_id']}, skipping notification")
        return
    notifier = notifier or WhatsAppClient()
    try:
        send_order_notification(notifier, phone, name, order["order_number"], "picked_up")
    except AppError as e:
        # The payment is already recorded; a failed message must not fail the webhook
        logger.error(f"WhatsApp notification for order {order['order_number']} failed: {e.message}")
