"""
customers.py — Customer profiles (owner-scoped CRUD)

total_orders / total_spent are never written from input. They're kept by
rollup.py as orders change; any change here that can move the soft join
(a new customer, a rename, an email change, a delete) recomputes the owner's
rollups in the same transaction so they always match the current orders.
"""

import sqlite3
import logging
from typing import Optional

from order_buddy.core.db import get_db
from order_buddy.core.validation import validate_customer, clean_customer_input
from order_buddy.core.rollup import reconcile_rollups
from order_buddy.core.timeutil import now_utc, to_iso

log = logging.getLogger("orderbuddy.customers")


def _fail(action: str, error: str, **extra) -> dict:
    return {"ok": False, "action": action, "error": error, **extra}


def _get(conn, owner: str, customer_id) -> Optional[dict]:
    row = conn.execute("SELECT * FROM customers WHERE id=? AND user_id=?",
                       (customer_id, owner)).fetchone()
    return dict(row) if row else None


def create_customer(owner: str, data: dict) -> dict:
    data = data or {}
    errors = validate_customer(data)
    if errors:
        field, message = errors[0]
        return _fail("create", message, field=field)
    clean = clean_customer_input(data)
    now = to_iso(now_utc())
    try:
        with get_db() as conn:
            cur = conn.execute("""
                INSERT INTO customers (user_id, name, email, phone, company, address, notes,
                                       total_orders, total_spent, created_at, updated_at)
                VALUES (?,?,?,?,?,?,?,0,0,?,?)
            """, (owner, clean.get("name"), clean.get("email"), clean.get("phone"),
                  clean.get("company"), clean.get("address"), clean.get("notes"), now, now))
            customer_id = cur.lastrowid
            reconcile_rollups(conn, owner)
            customer = _get(conn, owner, customer_id)
    except sqlite3.Error as e:
        log.error("create_customer failed for %s: %s", owner, e)
        return _fail("create", "Failed to create customer", storage_error=True)
    log.info("Customer %s created for %s (%d existing orders)",
             customer["name"], owner, customer["total_orders"])
    return {"ok": True, "customer": customer}


def update_customer(owner: str, customer_id, changes: dict) -> dict:
    changes = changes or {}
    errors = validate_customer(changes, partial=True)
    if errors:
        field, message = errors[0]
        return _fail("update", message, field=field)
    clean = clean_customer_input(changes)
    if "name" in clean and not clean["name"]:
        return _fail("update", "Customer name is required", field="name")
    try:
        with get_db() as conn:
            current = _get(conn, owner, customer_id)
            if current is None:
                return _fail("update", "Customer not found", not_found=True)
            if clean:
                cols = list(clean)
                conn.execute(
                    f"UPDATE customers SET {', '.join(c + '=?' for c in cols)}, updated_at=? "
                    f"WHERE id=?",
                    [clean[c] for c in cols] + [to_iso(now_utc()), current["id"]])
                if "name" in clean or "email" in clean:
                    reconcile_rollups(conn, owner)
            customer = _get(conn, owner, customer_id)
    except sqlite3.Error as e:
        log.error("update_customer %s failed for %s: %s", customer_id, owner, e)
        return _fail("update", "Failed to update customer", storage_error=True)
    return {"ok": True, "customer": customer}


def delete_customer(owner: str, customer_id) -> dict:
    """Orders are kept; they simply stop counting towards this customer."""
    try:
        with get_db() as conn:
            current = _get(conn, owner, customer_id)
            if current is None:
                return _fail("delete", "Customer not found", not_found=True)
            conn.execute("DELETE FROM customers WHERE id=?", (current["id"],))
            reconcile_rollups(conn, owner)
    except sqlite3.Error as e:
        log.error("delete_customer %s failed for %s: %s", customer_id, owner, e)
        return _fail("delete", "Failed to delete customer", storage_error=True)
    return {"ok": True, "id": current["id"]}


def get_customer(owner: str, customer_id) -> dict:
    with get_db() as conn:
        customer = _get(conn, owner, customer_id)
    if customer is None:
        return _fail("get", "Customer not found", not_found=True)
    return {"ok": True, "customer": customer}


def list_customers(owner: str, search: str = "") -> list:
    sql = "SELECT * FROM customers WHERE user_id=?"
    params = [owner]
    if search:
        q = f"%{search.lower()}%"
        sql += " AND (lower(name) LIKE ? OR lower(email) LIKE ? OR lower(company) LIKE ?)"
        params += [q, q, q]
    sql += " ORDER BY created_at DESC, id DESC"
    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [dict(r) for r in rows]


def reconcile_customers(owner: str) -> dict:
    """Recompute every rollup of `owner` from the orders. Reports drift."""
    try:
        with get_db() as conn:
            drifted = reconcile_rollups(conn, owner)
    except sqlite3.Error as e:
        log.error("reconcile_customers failed for %s: %s", owner, e)
        return _fail("reconcile", "Failed to reconcile customers", storage_error=True)
    return {"ok": True, "corrected": len(drifted), "drift": drifted}
