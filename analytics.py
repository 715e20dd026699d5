"""
Owner dashboard analytics.

Everything is recomputed in memory from the orders created in the requested
date range; nothing is cached or maintained incrementally.
"""
import csv
import io
import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from database import get_documents
from errors import InvalidRequestError
from orders import list_orders_in_range

logger = logging.getLogger(__name__)

PERIODS = ("daily", "weekly", "monthly", "yearly")
LAGOS_AREAS = [
    "Lagos Island", "Victoria Island", "Ikoyi", "Lekki", "Ikeja",
    "Surulere", "Yaba", "Apapa", "Mushin", "Agege",
]
TOP_CUSTOMERS = 10


def _as_datetime(value) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole else 0.0


def address_text(address) -> str:
    if not address:
        return ""
    if isinstance(address, dict):
        return ", ".join(str(v) for v in address.values() if v)
    return str(address)


def extract_area(address) -> str:
    """First known Lagos area mentioned anywhere in the address, else "Other"."""
    text = address_text(address).lower()
    for area in LAGOS_AREAS:
        if area.lower() in text:
            return area
    return "Other"


def _delivered(orders: Iterable[dict]) -> List[dict]:
    return [o for o in orders if o.get("status") == "delivered"]


def business_metrics(orders: List[dict], total_customers: int) -> dict:
    completed = _delivered(orders)
    total_revenue = sum(o["final_amount"] for o in completed)
    total_orders = len(orders)

    orders_per_customer = defaultdict(int)
    for order in orders:
        orders_per_customer[order["customer_id"]] += 1
    returning = sum(1 for count in orders_per_customer.values() if count > 1)

    return {
        "total_revenue": total_revenue,
        "total_orders": total_orders,
        "total_customers": total_customers,
        "average_order_value": total_revenue / total_orders if total_orders else 0,
        "completion_rate": _percent(len(completed), total_orders),
        "customer_retention_rate": _percent(returning, total_customers),
    }


def period_key(when: datetime, period: str) -> str:
    if period == "weekly":
        # weeks start on Sunday
        start = when - timedelta(days=(when.weekday() + 1) % 7)
        return start.date().isoformat()
    if period == "monthly":
        return f"{when.year}-{when.month:02d}"
    if period == "yearly":
        return str(when.year)
    return when.date().isoformat()


def revenue_analytics(orders: List[dict], period: str = "daily", today: Optional[datetime] = None) -> dict:
    if period not in PERIODS:
        raise InvalidRequestError(f"Unknown period '{period}'")
    today = today or datetime.now(timezone.utc)
    buckets = defaultdict(lambda: {"revenue": 0, "orders": 0})
    year_to_date = 0
    for order in _delivered(orders):
        created = _as_datetime(order["created_at"])
        bucket = buckets[period_key(created, period)]
        bucket["revenue"] += order["final_amount"]
        bucket["orders"] += 1
        if created.year == today.year:
            year_to_date += order["final_amount"]
    series = [{"period": key, **values} for key, values in sorted(buckets.items())]
    return {"period": period, "series": series, "year_to_date": year_to_date}


def customer_analytics(orders: List[dict], customers: List[dict], start: datetime) -> dict:
    by_id = {c["_id"]: c for c in customers}
    stats = {}
    for order in orders:
        customer = by_id.get(order["customer_id"])
        if not customer:
            continue
        created = _as_datetime(order["created_at"])
        entry = stats.setdefault(order["customer_id"], {
            "name": f"{customer.get('first_name', '')} {customer.get('last_name', '')}".strip(),
            "total_spent": 0,
            "total_orders": 0,
            "first_order": created,
            "area": extract_area(order.get("pickup_address")),
        })
        entry["total_spent"] += order["final_amount"]
        entry["total_orders"] += 1
        entry["first_order"] = min(entry["first_order"], created)

    start = _as_datetime(start)
    top = sorted(
        ({"customer_id": cid, "name": s["name"], "total_spent": s["total_spent"], "total_orders": s["total_orders"]}
         for cid, s in stats.items()),
        key=lambda c: c["total_spent"],
        reverse=True,
    )[:TOP_CUSTOMERS]

    areas = defaultdict(lambda: {"count": 0, "revenue": 0})
    for s in stats.values():
        areas[s["area"]]["count"] += 1
        areas[s["area"]]["revenue"] += s["total_spent"]

    return {
        "new_customers": sum(1 for s in stats.values() if s["first_order"] >= start),
        "returning_customers": sum(1 for s in stats.values() if s["total_orders"] > 1),
        "top_customers": top,
        "customers_by_area": sorted(
            ({"area": area, **values} for area, values in areas.items()),
            key=lambda a: a["revenue"],
            reverse=True,
        ),
    }


def service_analytics(orders: List[dict], items: List[dict], services: List[dict]) -> dict:
    names = {s["_id"]: s["name"] for s in services}
    order_area = {o["_id"]: extract_area(o.get("pickup_address")) for o in orders}

    popularity = defaultdict(lambda: {"order_count": 0, "revenue": 0})
    by_area = defaultdict(lambda: defaultdict(int))
    for item in items:
        if item["order_id"] not in order_area:
            continue
        name = names.get(item["service_id"]) or item.get("service_name")
        if not name:
            continue
        stats = popularity[item["service_id"]]
        stats["service_name"] = name
        stats["order_count"] += item["quantity"]
        stats["revenue"] += item["total_price"]
        by_area[order_area[item["order_id"]]][name] += item["quantity"]

    return {
        "popular_services": sorted(
            ({"service_id": sid, **values} for sid, values in popularity.items()),
            key=lambda s: s["order_count"],
            reverse=True,
        ),
        "services_by_area": [
            {
                "area": area,
                "services": sorted(
                    ({"service_name": n, "count": c} for n, c in counts.items()),
                    key=lambda s: s["count"],
                    reverse=True,
                ),
            }
            for area, counts in by_area.items()
        ],
    }


def operational_metrics(orders: List[dict]) -> dict:
    counts = defaultdict(int)
    for order in orders:
        counts[order["status"]] += 1

    hours = []
    for order in _delivered(orders):
        finished = _as_datetime(order.get("actual_delivery_time") or order.get("updated_at"))
        started = _as_datetime(order["created_at"])
        if finished and started:
            hours.append((finished - started).total_seconds() / 3600)

    return {
        "orders_by_status": [
            {"status": status, "count": count, "percentage": _percent(count, len(orders))}
            for status, count in counts.items()
        ],
        "average_processing_time": sum(hours) / len(hours) if hours else 0,
        "total_pickups": len(orders),
        "total_deliveries": len(_delivered(orders)),
    }


def insights(report: dict) -> List[str]:
    notes = []
    completion = report["metrics"]["completion_rate"]
    if completion > 90:
        notes.append("Excellent completion rate! Your operations are running smoothly.")
    elif completion < 70:
        notes.append("Completion rate needs improvement. Consider reviewing operational processes.")

    customers = report["customers"]
    if customers["new_customers"] and customers["returning_customers"] / customers["new_customers"] > 0.5:
        notes.append("Strong customer loyalty! More than half of your customers are returning.")

    popular = report["services"]["popular_services"]
    if popular:
        top = popular[0]
        notes.append(f'"{top["service_name"]}" is your most popular service with {top["order_count"]} orders.')

    if report["operations"]["total_deliveries"] and report["operations"]["average_processing_time"] < 24:
        notes.append("Fast processing times! Orders are completed quickly.")
    return notes


def generate_report(start_date: str, end_date: str, period: str = "daily") -> dict:
    orders = list_orders_in_range(start_date, end_date)
    order_ids = [o["_id"] for o in orders]
    items = get_documents("orderitem", {"order_id": {"$in": order_ids}}) if order_ids else []
    services = get_documents("service", {})
    customers = get_documents("user", {"role": "customer"})
    start = datetime.strptime(start_date, "%Y-%m-%d").replace(tzinfo=timezone.utc)

    report = {
        "start_date": start_date,
        "end_date": end_date,
        "metrics": business_metrics(orders, len(customers)),
        "revenue": revenue_analytics(orders, period),
        "customers": customer_analytics(orders, customers, start),
        "services": service_analytics(orders, items, services),
        "operations": operational_metrics(orders),
    }
    report["insights"] = insights(report)
    logger.info(f"Generated analytics report {start_date}..{end_date} over {len(orders)} orders")
    return report


EXPORTS = {
    "revenue": (["Period", "Revenue", "Orders"], lambda r: ((p["period"], p["revenue"], p["orders"]) for p in r["revenue"]["series"])),
    "customers": (["Customer Name", "Total Spent", "Total Orders"], lambda r: ((c["name"], c["total_spent"], c["total_orders"]) for c in r["customers"]["top_customers"])),
    "services": (["Service Name", "Order Count", "Revenue"], lambda r: ((s["service_name"], s["order_count"], s["revenue"]) for s in r["services"]["popular_services"])),
    "operations": (["Order Status", "Count", "Percentage"], lambda r: ((s["status"], s["count"], f"{s['percentage']:.2f}%") for s in r["operations"]["orders_by_status"])),
}


def export_csv(kind: str, report: dict) -> str:
    if kind not in EXPORTS:
        raise InvalidRequestError(f"Unknown export type '{kind}'")
    header, rows = EXPORTS[kind]
    out = io.StringIO()
    writer = csv.writer(out, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows(report))
    return out.getvalue()
