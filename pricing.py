"""
Line-item pricing, order totals and money helpers.

All amounts are integer kobo. Weight-based charges are the only place a
fraction can appear; they are rounded half-even to a whole kobo.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Iterable, Optional

import config

KOBO_PER_NAIRA = 100


def unit_price(service: dict, weight: Optional[float] = None) -> int:
    """
    Price of one unit of `service`.

    Starts from the base price and adds `weight * price_per_kg` when both are
    present. A per-item price replaces whatever was computed so far, so a
    service with both rates is always charged per item.
    """
    price = Decimal(service.get("base_price") or 0)
    per_kg = service.get("price_per_kg")
    if weight and per_kg:
        price += Decimal(str(weight)) * Decimal(per_kg)
    per_item = service.get("price_per_item")
    if per_item:
        price = Decimal(per_item)
    return int(price.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def line_total(price: int, quantity: int) -> int:
    return price * quantity


def order_totals(line_totals: Iterable[int], discount: int = 0) -> dict:
    total = sum(line_totals)
    return {
        "total_amount": total,
        "discount_amount": discount,
        "final_amount": total - discount,
    }


def generate_order_number(now: Optional[datetime] = None, prefix: Optional[str] = None) -> str:
    """PREFIX + YYMMDD + last six digits of the epoch milliseconds."""
    now = now or datetime.now(timezone.utc)
    prefix = config.ORDER_NUMBER_PREFIX if prefix is None else prefix
    millis = str(int(now.timestamp() * 1000))
    return f"{prefix}{now:%y%m%d}{millis[-6:]}"


def naira_to_kobo(naira) -> int:
    amount = Decimal(str(naira)) * KOBO_PER_NAIRA
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


def kobo_to_naira(kobo: int) -> Decimal:
    return Decimal(kobo) / KOBO_PER_NAIRA


def format_naira(kobo: int) -> str:
    return f"₦{kobo_to_naira(kobo):,.2f}"
