"""
Thin client for the Paystack REST API.

Amounts are always in kobo. The client never touches the database; see
payments.py for what happens with the results.
"""
import hashlib
import hmac
import logging
import re
import time
from typing import Any, Dict, Optional

import requests

import config
from errors import ConfigurationError, ExternalServiceError, InvalidRequestError

logger = logging.getLogger(__name__)

REFERENCE_PREFIX = "GAB"
CHANNELS = ["card", "bank", "ussd", "mobile_money", "bank_transfer"]
REFERENCE_PATTERN = re.compile(r"^[A-Za-z0-9_.=-]+$")


def generate_reference(order_id: str, now_ms: Optional[int] = None) -> str:
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{REFERENCE_PREFIX}_{order_id}_{now_ms}"


def order_id_from_reference(reference: Optional[str]) -> Optional[str]:
    """Recover the order id from a `GAB_<orderId>_<timestamp>` reference."""
    if not reference or not reference.startswith(f"{REFERENCE_PREFIX}_"):
        return None
    parts = reference.split("_")
    if len(parts) < 3:
        return None
    return "_".join(parts[1:-1]) or None


def verify_signature(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Paystack signs webhook bodies with HMAC-SHA512 of the secret key."""
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode(), body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


class PaystackClient:
    """
    Service for initializing and verifying Paystack transactions.
    """

    def __init__(self, secret_key: Optional[str] = None, public_key: Optional[str] = None, base_url: Optional[str] = None, timeout: int = 30):
        self.secret_key = config.PAYSTACK_SECRET_KEY if secret_key is None else secret_key
        self.public_key = config.PAYSTACK_PUBLIC_KEY if public_key is None else public_key
        self.base_url = (base_url or config.PAYSTACK_BASE_URL).rstrip("/")
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.secret_key)

    def _get_headers(self) -> Dict[str, str]:
        if not self.configured:
            raise ConfigurationError("Payment service not configured")
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
        }

    def _make_request(self, method: str, endpoint: str, data: Optional[Dict[str, Any]] = None) -> Any:
        """Call Paystack and return the `data` member of a successful response."""
        url = f"{self.base_url}{endpoint}"
        headers = self._get_headers()
        try:
            response = requests.request(
                method=method,
                url=url,
                headers=headers,
                json=data,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Paystack request failed: {method} {url} - {e}")
            raise ExternalServiceError(f"Payment gateway unreachable: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.ok or not body.get("status"):
            message = body.get("message") or f"Payment gateway error ({response.status_code})"
            logger.warning(f"Paystack rejected {method} {endpoint}: {message}")
            raise ExternalServiceError(message)
        return body.get("data")

    def initialize_transaction(self, email: str, amount: int, reference: str, callback_url: Optional[str] = None, metadata: Optional[dict] = None, currency: str = "NGN") -> dict:
        payload = {
            "email": email,
            "amount": amount,
            "currency": currency,
            "reference": reference,
            "channels": CHANNELS,
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if metadata:
            payload["metadata"] = metadata
        data = self._make_request("POST", "/transaction/initialize", payload)
        return {
            "authorization_url": data["authorization_url"],
            "access_code": data["access_code"],
            "reference": data["reference"],
        }

    def verify_transaction(self, reference: str) -> dict:
        """
        Look up a transaction. The returned dict carries Paystack's own
        `status` ("success", "failed", "abandoned", ...), `amount` in kobo,
        `metadata` and `paid_at`.
        """
        if not reference or not REFERENCE_PATTERN.match(reference):
            raise InvalidRequestError("Invalid payment reference")
        data = self._make_request("GET", f"/transaction/verify/{reference}")
        if not isinstance(data, dict):
            raise ExternalServiceError("Unexpected response from payment gateway")
        return data

    def list_banks(self) -> list:
        return self._make_request("GET", "/bank") or []
