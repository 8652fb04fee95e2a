"""
analytics.py — Dashboard analytics, recomputed from scratch per request

Pure functions over an order snapshot (ledger.list_orders) and the owner's
customers. No caching, no database access, inputs are never mutated: the
same (orders, customers, now, window) always gives the same answer.

Dates are bucketed in the zone of `now` (UTC when `now` is naive). Order
dates stored without a zone are read in that same zone.
"""

import logging
from datetime import timedelta, timezone

from order_buddy.core.search import order_value
from order_buddy.core.timeutil import now_utc, parse_timestamp

log = logging.getLogger("orderbuddy.analytics")

WINDOWS = {"7d": 7, "30d": 30, "90d": 90}
TOP_CUSTOMERS = 5
MONTH_BUCKETS = 6
SUMMARY_MONTHS = 12


def parse_window(token) -> int:
    """'7d' / '30d' / '90d' → days. Anything else is a ValueError."""
    if token in WINDOWS:
        return WINDOWS[token]
    raise ValueError(f"Unknown range {token!r}; expected one of {', '.join(WINDOWS)}")


def _resolve_now(now):
    now = parse_timestamp(now) if now is not None else now_utc()
    return now, now.tzinfo or timezone.utc


def _order_dt(order: dict, tz):
    dt = parse_timestamp(order.get("order_date"), tz)
    return dt.astimezone(tz) if dt else None


def growth(current: float, previous: float) -> float:
    """Percent change; 0 when there is no baseline."""
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def _period_stats(orders: list) -> tuple:
    revenue = round(sum(order_value(o) for o in orders), 2)
    customers = len({o.get("customer_name") for o in orders})
    return revenue, len(orders), customers


# ── Windowed analytics ───────────────────────────────────────────────────────
def compute_analytics(orders: list, customers: list, now=None, window_days: int = 30) -> dict:
    if window_days not in WINDOWS.values():
        raise ValueError(f"window_days must be one of 7, 30, 90 (got {window_days!r})")
    now, tz = _resolve_now(now)
    start = now - timedelta(days=window_days)
    prev_start = start - timedelta(days=window_days)

    dated = [(o, _order_dt(o, tz)) for o in orders]
    dated = [(o, dt) for o, dt in dated if dt is not None]
    current = [o for o, dt in dated if dt >= start]
    previous = [o for o, dt in dated if prev_start <= dt < start]

    revenue, count, customer_count = _period_stats(current)
    prev_revenue, prev_count, prev_customers = _period_stats(previous)

    # revenue by status, in first-seen order
    by_status = {}
    for o in current:
        bucket = by_status.setdefault(o.get("status"), {"value": 0.0, "count": 0})
        bucket["value"] += order_value(o)
        bucket["count"] += 1
    revenue_by_status = [
        {"status": str(status or "").capitalize(), "value": round(b["value"], 2), "count": b["count"]}
        for status, b in by_status.items()
    ]

    ranked = sorted(customers, key=lambda c: c.get("total_spent") or 0, reverse=True)
    top_customers = [
        {"id": c.get("id"), "name": c.get("name"),
         "revenue": c.get("total_spent") or 0, "orders": c.get("total_orders") or 0}
        for c in ranked[:TOP_CUSTOMERS]
    ]

    return {
        "window_days": window_days,
        "total_revenue": revenue,
        "total_orders": count,
        "total_customers": customer_count,
        "average_order_value": round(revenue / count, 2) if count else 0,
        "revenue_growth": growth(revenue, prev_revenue),
        "order_growth": growth(count, prev_count),
        "customer_growth": growth(customer_count, prev_customers),
        "revenue_by_status": revenue_by_status,
        "top_customers": top_customers,
        "daily_revenue": _daily_series(current, now, tz, window_days),
        "monthly_trends": _monthly_series(dated, now),
    }


def _daily_series(orders: list, now, tz, days: int) -> list:
    today = now.astimezone(tz).date()
    buckets = {}
    for i in range(days - 1, -1, -1):
        day = today - timedelta(days=i)
        buckets[day] = {"date": day.isoformat(), "label": day.strftime("%b %d"),
                        "revenue": 0.0, "orders": 0}
    for o in orders:
        bucket = buckets.get(_order_dt(o, tz).date())
        if bucket:
            bucket["revenue"] = round(bucket["revenue"] + order_value(o), 2)
            bucket["orders"] += 1
    return list(buckets.values())


def _monthly_series(dated: list, now) -> list:
    """Months hit by now, now-30d, ..., now-150d; over all orders, oldest first."""
    buckets = {}
    for i in range(MONTH_BUCKETS - 1, -1, -1):
        label = (now - timedelta(days=30 * i)).strftime("%b %Y")
        buckets.setdefault(label, {"month": label, "revenue": 0.0, "orders": 0, "_names": set()})
    for o, dt in dated:
        bucket = buckets.get(dt.strftime("%b %Y"))
        if bucket:
            bucket["revenue"] = round(bucket["revenue"] + order_value(o), 2)
            bucket["orders"] += 1
            bucket["_names"].add(o.get("customer_name"))
    return [{"month": b["month"], "revenue": b["revenue"], "orders": b["orders"],
             "customers": len(b["_names"])} for b in buckets.values()]


# ── Order summary widget ─────────────────────────────────────────────────────
def _distribution(values: list, total: int, key: str, capitalize: bool = True) -> list:
    counts = {}
    for v in values:
        counts[v] = counts.get(v, 0) + 1
    return [
        {key: v.capitalize() if capitalize else v, "count": n,
         "percentage": round(n / total * 100, 1) if total else 0}
        for v, n in counts.items()
    ]


def compute_order_summary(orders: list, now=None) -> dict:
    """All-time totals and distributions over every order."""
    now, tz = _resolve_now(now)
    total = len(orders)
    revenue = round(sum(order_value(o) for o in orders), 2)

    months = {}
    for o in orders:
        dt = _order_dt(o, tz)
        if dt is None:
            continue
        key = dt.strftime("%Y-%m")
        m = months.setdefault(key, {"month": key, "orders": 0, "revenue": 0.0})
        m["orders"] += 1
        m["revenue"] = round(m["revenue"] + order_value(o), 2)
    trends = [months[k] for k in sorted(months)][-SUMMARY_MONTHS:]

    open_orders = [o for o in orders if o.get("status") != "completed"]
    urgent = [o for o in open_orders if o.get("priority") == "urgent"]
    overdue = [o for o in open_orders
               if o.get("due_date") and parse_timestamp(o["due_date"], tz) < now]

    completed = [o for o in orders if o.get("status") == "completed"]
    spans = []
    for o in completed:
        if not o.get("completed_at") or not o.get("order_date"):
            continue
        delta = parse_timestamp(o["completed_at"], tz) - parse_timestamp(o["order_date"], tz)
        spans.append(delta.total_seconds() / 86400)

    return {
        "total_orders": total,
        "total_revenue": revenue,
        "average_order_value": round(revenue / total, 2) if total else 0,
        "status_distribution": _distribution([o.get("status") or "pending" for o in orders],
                                             total, "status"),
        "priority_distribution": _distribution([o.get("priority") or "medium" for o in orders],
                                               total, "priority"),
        "currency_distribution": _distribution([o.get("currency") or "USD" for o in orders],
                                               total, "currency", capitalize=False),
        "monthly_trends": trends,
        "urgent_orders": len(urgent),
        "overdue_orders": len(overdue),
        "completed_orders": len(completed),
        "average_completion_days": round(sum(spans) / len(spans), 1) if spans else 0,
    }
