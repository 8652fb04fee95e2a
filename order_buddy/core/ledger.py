"""
ledger.py — Order writes and reads

Every order write goes through the same pipeline:

    validate → [ transaction: derive → persist → customer rollup ] → commit
             → activity log (own connection) → notification (create only)

The transaction is one `with get_db()` block. Anything after it is
best-effort and can't undo the write.

All functions are owner-scoped: an order belonging to someone else is
indistinguishable from one that doesn't exist.

Results follow the usual dict convention:
    {"ok": True, "order": {...}}
    {"ok": False, "action": "update", "error": "...", "field": "..."}
"""

import re
import sqlite3
import logging
from typing import Optional

from order_buddy.core.db import get_db, _jl, _jd
from order_buddy.core.validation import validate_order, clean_order_input
from order_buddy.core.derivation import derive_order
from order_buddy.core.rollup import apply_insert, apply_update, apply_delete
from order_buddy.core.activity import log_order_activity
from order_buddy.agents.notify_agent import send_order_notification, push_bell

log = logging.getLogger("orderbuddy.ledger")

ORDER_COLUMNS = (
    "order_id", "user_id", "customer_name", "customer_email", "customer_phone",
    "order_amount", "tax_rate", "tax_amount", "discount_amount", "total_amount",
    "status", "priority", "currency", "order_date", "due_date", "completed_at",
    "last_activity_at", "notes", "tags", "shipping_address", "billing_address",
    "invoice_file_uri", "created_at", "updated_at",
)

_SEQ_RE = re.compile(r"^ORD-(\d+)$")


def order_from_row(row) -> dict:
    """DB row → API dict (tags decoded)."""
    if row is None:
        return None
    d = dict(row)
    d["tags"] = _jl(d.get("tags"), [])
    return d


def _fail(action: str, error: str, **extra) -> dict:
    return {"ok": False, "action": action, "error": error, **extra}


def _not_found(action: str) -> dict:
    return _fail(action, "Order not found", not_found=True)


def _invalid(action: str, errors: list) -> dict:
    field, message = errors[0]
    return _fail(action, message, field=field,
                 errors=[{"field": f, "error": m} for f, m in errors])


# ── Low-level row access (caller holds the connection) ───────────────────────
def next_order_id(conn, owner: str) -> str:
    """ORD-NNN, one past the highest sequence this owner has used."""
    highest = 0
    for r in conn.execute("SELECT order_id FROM orders WHERE user_id=?", (owner,)):
        m = _SEQ_RE.match(r["order_id"] or "")
        if m:
            highest = max(highest, int(m.group(1)))
    return f"ORD-{highest + 1:03d}"


def _fetch(conn, owner: str, order_id: str) -> Optional[dict]:
    row = conn.execute("SELECT * FROM orders WHERE user_id=? AND order_id=?",
                       (owner, order_id)).fetchone()
    return dict(row) if row else None


def _fetch_pk(pk: int) -> Optional[dict]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM orders WHERE id=?", (pk,)).fetchone()
    return order_from_row(row)


def _insert(conn, row: dict) -> int:
    values = [_jd(row.get(c) or []) if c == "tags" else row.get(c) for c in ORDER_COLUMNS]
    cur = conn.execute(
        f"INSERT INTO orders ({', '.join(ORDER_COLUMNS)}) "
        f"VALUES ({', '.join('?' for _ in ORDER_COLUMNS)})", values)
    return cur.lastrowid


def _write_update(conn, pk: int, row: dict):
    cols = [c for c in ORDER_COLUMNS if c not in ("order_id", "user_id", "created_at")]
    values = [_jd(row.get(c) or []) if c == "tags" else row.get(c) for c in cols]
    conn.execute(f"UPDATE orders SET {', '.join(c + '=?' for c in cols)} WHERE id=?",
                 values + [pk])


def _apply_update(conn, old: dict, changes: dict, now=None) -> dict:
    """Derive, write and re-roll one order inside the caller's transaction."""
    row = derive_order({**old, **changes}, old=old, now=now)
    _write_update(conn, old["id"], row)
    apply_update(conn, old, row)
    return row


# ── Create ───────────────────────────────────────────────────────────────────
def create_order(owner: str, data: dict, notify: bool = True, now=None) -> dict:
    """Create an order for `owner`. Sends the confirmation email when the
    order has a customer email and `notify` is set."""
    data = data or {}
    errors = validate_order(data)
    if errors:
        return _invalid("create", errors)
    clean = clean_order_input(data)

    try:
        with get_db() as conn:
            candidate = dict(clean, user_id=owner, order_id=next_order_id(conn, owner))
            row = derive_order(candidate, now=now)
            pk = _insert(conn, row)
            apply_insert(conn, row)
    except (sqlite3.Error, ValueError) as e:
        log.error("create_order failed for %s: %s", owner, e)
        return _fail("create", "Failed to create order", storage_error=True)

    log_order_activity("created", pk)
    order = _fetch_pk(pk)
    log.info("Order %s created for %s (total %.2f %s)", order["order_id"], owner,
             order["total_amount"] or 0, order["currency"])
    result = {"ok": True, "order": order}

    push_bell(owner, "order_created", f"New order {order['order_id']}",
              body=f"{order['customer_name']}: {order['currency']} {order['total_amount']:.2f}",
              urgency="success", order_id=order["order_id"])

    if notify and order.get("customer_email"):
        sent = send_order_notification(
            to=order["customer_email"], customer_name=order["customer_name"],
            order_id=order["order_id"], order_amount=order["total_amount"])
        if not sent.get("ok") and not sent.get("skipped"):
            log.warning("Order %s created but confirmation email failed: %s",
                        order["order_id"], sent.get("error") or sent.get("reason"))
            result["warning"] = "Order created, but the confirmation email could not be sent"
    return result


# ── Update ───────────────────────────────────────────────────────────────────
def update_order(owner: str, order_id: str, changes: dict, now=None) -> dict:
    changes = changes or {}
    errors = validate_order(changes, partial=True)
    if errors:
        return _invalid("update", errors)
    clean = clean_order_input(changes, partial=True)

    try:
        with get_db() as conn:
            old = _fetch(conn, owner, order_id)
            if old is None:
                return _not_found("update")
            _apply_update(conn, old, clean, now=now)
    except (sqlite3.Error, ValueError) as e:
        log.error("update_order %s failed for %s: %s", order_id, owner, e)
        return _fail("update", "Failed to update order", storage_error=True)

    log_order_activity("updated", old["id"], old=old)
    return {"ok": True, "order": _fetch_pk(old["id"])}


def bulk_update(owner: str, order_ids: list, changes: dict, now=None) -> dict:
    """Apply the same changes to every listed order the owner has, in one
    transaction. Unknown ids are skipped; any write error fails the batch."""
    errors = validate_order(changes or {}, partial=True)
    if errors:
        return _invalid("update", errors)
    clean = clean_order_input(changes, partial=True)

    touched = []
    try:
        with get_db() as conn:
            for order_id in dict.fromkeys(order_ids or []):
                old = _fetch(conn, owner, order_id)
                if old is None:
                    continue
                _apply_update(conn, old, clean, now=now)
                touched.append(old)
    except (sqlite3.Error, ValueError) as e:
        log.error("bulk_update of %d orders failed for %s: %s", len(order_ids or []), owner, e)
        return _fail("update", "Failed to update orders", storage_error=True)

    for old in touched:
        log_order_activity("updated", old["id"], old=old)
    return {"ok": True, "count": len(touched), "order_ids": [o["order_id"] for o in touched]}


# ── Delete ───────────────────────────────────────────────────────────────────
def delete_order(owner: str, order_id: str) -> dict:
    try:
        with get_db() as conn:
            old = _fetch(conn, owner, order_id)
            if old is None:
                return _not_found("delete")
            conn.execute("DELETE FROM orders WHERE id=?", (old["id"],))
            apply_delete(conn, old)
    except sqlite3.Error as e:
        log.error("delete_order %s failed for %s: %s", order_id, owner, e)
        return _fail("delete", "Failed to delete order", storage_error=True)
    log.info("Order %s deleted by %s", order_id, owner)
    return {"ok": True, "order_id": order_id}


def bulk_delete(owner: str, order_ids: list) -> dict:
    deleted = []
    try:
        with get_db() as conn:
            for order_id in dict.fromkeys(order_ids or []):
                old = _fetch(conn, owner, order_id)
                if old is None:
                    continue
                conn.execute("DELETE FROM orders WHERE id=?", (old["id"],))
                apply_delete(conn, old)
                deleted.append(order_id)
    except sqlite3.Error as e:
        log.error("bulk_delete of %d orders failed for %s: %s", len(order_ids or []), owner, e)
        return _fail("delete", "Failed to delete orders", storage_error=True)
    return {"ok": True, "count": len(deleted), "order_ids": deleted}


# ── Reads ────────────────────────────────────────────────────────────────────
def get_order(owner: str, order_id: str) -> dict:
    with get_db() as conn:
        row = _fetch(conn, owner, order_id)
    if row is None:
        return _not_found("get")
    return {"ok": True, "order": order_from_row(row)}


def list_orders(owner: str, order_ids: list = None) -> list:
    """All orders of `owner`, newest first. Optionally only the given ids."""
    sql = "SELECT * FROM orders WHERE user_id=?"
    params = [owner]
    if order_ids is not None:
        if not order_ids:
            return []
        sql += f" AND order_id IN ({', '.join('?' for _ in order_ids)})"
        params.extend(order_ids)
    sql += " ORDER BY created_at DESC, id DESC"
    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [order_from_row(r) for r in rows]
