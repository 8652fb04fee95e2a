"""
export.py — Bulk order actions and CSV export

Bulk actions apply to exactly the listed order ids the owner has. Writes go
through the ledger in one transaction, so a batch either fully applies or
not at all, and the result is reported once for the batch:

    {"ok": True,  "action": "update_status", "count": 3, "error": None}
    {"ok": False, "action": "delete", "count": 0, "error": "Failed to delete orders"}

CSV export writes the selected columns in the order given, header row from
the column labels, values as stored (no locale formatting).
"""

import io
import csv
import logging

from order_buddy.core.db import ORDER_STATUSES, ORDER_PRIORITIES
from order_buddy.core.ledger import bulk_update, bulk_delete, list_orders
from order_buddy.core.timeutil import now_utc, parse_timestamp
from order_buddy.agents.notify_agent import send_order_notification

log = logging.getLogger("orderbuddy.export")

EXPORT_COLUMNS = {
    "order_id": "Order ID",
    "customer_name": "Customer Name",
    "customer_email": "Customer Email",
    "customer_phone": "Customer Phone",
    "order_amount": "Order Amount",
    "tax_amount": "Tax Amount",
    "total_amount": "Total Amount",
    "status": "Status",
    "priority": "Priority",
    "currency": "Currency",
    "order_date": "Order Date",
    "due_date": "Due Date",
    "completed_at": "Completed Date",
    "notes": "Notes",
    "tags": "Tags",
}
DEFAULT_EXPORT_COLUMNS = ["order_id", "customer_name", "order_amount",
                          "total_amount", "status", "order_date"]

BULK_ACTIONS = ("update_status", "update_priority", "archive", "delete",
                "export", "send_notifications")


# ── CSV ──────────────────────────────────────────────────────────────────────
def _cell(key: str, value) -> str:
    if value is None:
        return ""
    if key == "tags":
        return "; ".join(str(t) for t in (value or []))
    return str(value)


def export_orders_csv(orders: list, columns: list) -> str:
    """CSV text for `orders` with the given column keys, in that order."""
    if not isinstance(columns, (list, tuple)) or not all(isinstance(c, str) for c in columns):
        raise ValueError("Columns must be a list of column names")
    if not columns:
        raise ValueError("Select at least one column to export")
    unknown = [c for c in columns if c not in EXPORT_COLUMNS]
    if unknown:
        raise ValueError(f"Unknown export columns: {', '.join(unknown)}")

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow([EXPORT_COLUMNS[c] for c in columns])
    for order in orders:
        writer.writerow([_cell(c, order.get(c)) for c in columns])
    return buf.getvalue()


def export_filename(now=None) -> str:
    now = parse_timestamp(now) if now is not None else now_utc()
    return f"orders_export_{now.strftime('%Y-%m-%d')}.csv"


# ── Bulk actions ─────────────────────────────────────────────────────────────
_WRITE_ERRORS = {
    "update_status": "Failed to update order status",
    "update_priority": "Failed to update order priority",
    "archive": "Failed to archive orders",
    "delete": "Failed to delete orders",
}


def _batch(action: str, ok: bool, count: int = 0, error: str = None, **extra) -> dict:
    return {"ok": ok, "action": action, "count": count, "error": error, **extra}


def _bulk_notify(owner: str, order_ids: list) -> dict:
    orders = [o for o in list_orders(owner, order_ids) if o.get("customer_email")]
    if not orders:
        return _batch("send_notifications", False, error="No selected orders have a customer email")
    sent = 0
    for o in orders:
        result = send_order_notification(o["customer_email"], o["customer_name"],
                                         o["order_id"], o["total_amount"])
        if result.get("skipped"):
            return _batch("send_notifications", False, error=result.get("reason"))
        if not result.get("ok"):
            log.warning("Bulk notify stopped at %s after %d sent", o["order_id"], sent)
            return _batch("send_notifications", False, count=sent,
                          error="Failed to send notifications", storage_error=True)
        sent += 1
    return _batch("send_notifications", True, count=sent)


def run_bulk_action(owner: str, order_ids: list, action: str, value=None,
                    columns: list = None, now=None) -> dict:
    """Apply `action` to the owner's orders in `order_ids`.

    value: the new status (update_status) or priority (update_priority).
    columns: export columns, defaulting to DEFAULT_EXPORT_COLUMNS.
    """
    if action not in BULK_ACTIONS:
        return _batch(action, False, error=f"Unknown bulk action: {action}")
    order_ids = [str(i) for i in (order_ids or []) if i]
    if not order_ids:
        return _batch(action, False, error="No orders selected")

    if action == "update_status" and value not in ORDER_STATUSES:
        return _batch(action, False, error=f"Status must be one of: {', '.join(ORDER_STATUSES)}")
    if action == "update_priority" and value not in ORDER_PRIORITIES:
        return _batch(action, False, error=f"Priority must be one of: {', '.join(ORDER_PRIORITIES)}")

    if action in ("update_status", "archive"):
        status = "completed" if action == "archive" else value
        result = bulk_update(owner, order_ids, {"status": status}, now=now)
    elif action == "update_priority":
        result = bulk_update(owner, order_ids, {"priority": value}, now=now)
    elif action == "delete":
        result = bulk_delete(owner, order_ids)
    elif action == "export":
        orders = list_orders(owner, order_ids)
        if not orders:
            return _batch(action, False, error="No matching orders", not_found=True)
        try:
            text = export_orders_csv(orders, columns or DEFAULT_EXPORT_COLUMNS)
        except ValueError as e:
            return _batch(action, False, error=str(e))
        return _batch(action, True, count=len(orders), csv=text, filename=export_filename(now))
    else:
        return _bulk_notify(owner, order_ids)

    if not result["ok"]:
        return _batch(action, False, error=_WRITE_ERRORS[action], storage_error=True)
    if result["count"] == 0:
        return _batch(action, False, error="No matching orders", not_found=True)
    log.info("Bulk %s by %s: %d orders", action, owner, result["count"])
    return _batch(action, True, count=result["count"], order_ids=result["order_ids"])
