"""Order search: filtering, sorting and pagination over an order snapshot.

Works on the list returned by ledger.list_orders(); nothing here touches
the database.

filters (all optional, combined with AND):
    search      substring of order id, customer name/email, notes or any tag
    status      list of statuses (any)
    priority    list of priorities (any)
    currency    list of currencies (any)
    min_amount  on total_amount, falling back to order_amount
    max_amount
    date_from   order_date >= date_from
    date_to     order_date <= date_to (a bare date includes that whole day)
    tags        list of tags (any)
"""

import math
from datetime import timedelta

from order_buddy.core.timeutil import parse_timestamp

SORTABLE = ("order_id", "customer_name", "order_amount", "total_amount", "status",
            "priority", "currency", "order_date", "due_date", "created_at",
            "updated_at", "last_activity_at")
PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2, "urgent": 3}
MAX_PAGE_SIZE = 100


def _as_list(value) -> list:
    if value is None or value == "":
        return []
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return list(value)


def order_value(order: dict) -> float:
    """total_amount when known, else order_amount."""
    total = order.get("total_amount")
    return float(total if total is not None else order.get("order_amount") or 0)


def _matches_text(order: dict, needle: str) -> bool:
    haystack = [order.get("order_id"), order.get("customer_name"),
                order.get("customer_email"), order.get("notes")]
    haystack += list(order.get("tags") or [])
    return any(needle in str(h).lower() for h in haystack if h)


def filter_orders(orders: list, filters: dict = None) -> list:
    filters = filters or {}
    result = list(orders)

    needle = str(filters.get("search") or "").strip().lower()
    if needle:
        result = [o for o in result if _matches_text(o, needle)]

    for field in ("status", "priority", "currency"):
        wanted = _as_list(filters.get(field))
        if wanted:
            result = [o for o in result if o.get(field) in wanted]

    if filters.get("min_amount") not in (None, ""):
        low = float(filters["min_amount"])
        result = [o for o in result if order_value(o) >= low]
    if filters.get("max_amount") not in (None, ""):
        high = float(filters["max_amount"])
        result = [o for o in result if order_value(o) <= high]

    if filters.get("date_from"):
        start = parse_timestamp(filters["date_from"])
        result = [o for o in result
                  if o.get("order_date") and parse_timestamp(o["order_date"]) >= start]
    if filters.get("date_to"):
        raw = str(filters["date_to"])
        end = parse_timestamp(raw)
        if len(raw) == 10:
            result = [o for o in result if o.get("order_date")
                      and parse_timestamp(o["order_date"]) < end + timedelta(days=1)]
        else:
            result = [o for o in result
                      if o.get("order_date") and parse_timestamp(o["order_date"]) <= end]

    tags = _as_list(filters.get("tags"))
    if tags:
        result = [o for o in result if any(t in tags for t in (o.get("tags") or []))]

    return result


def _sort_key(field: str):
    def key(order):
        value = order.get(field)
        if field == "priority":
            return (value is None, PRIORITY_RANK.get(value, 1))
        if field in ("order_amount", "total_amount"):
            return (value is None, float(value or 0))
        return (value is None, str(value or ""))
    return key


def paginate_orders(orders: list, page: int = 1, limit: int = 20,
                    sort_by: str = "created_at", sort_order: str = "desc") -> dict:
    """One page of `orders`. Returns {orders, total, page, total_pages}."""
    if sort_by not in SORTABLE:
        raise ValueError(f"Cannot sort by {sort_by!r}")
    if sort_order not in ("asc", "desc"):
        raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    page = max(1, int(page))

    ordered = sorted(orders, key=_sort_key(sort_by), reverse=(sort_order == "desc"))
    total = len(ordered)
    start = (page - 1) * limit
    return {
        "orders": ordered[start:start + limit],
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if total else 0,
    }
