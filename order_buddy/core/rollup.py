"""
rollup.py — Customer order rollups (total_orders, total_spent)

Customers are matched to orders by a soft join, not a foreign key:

    customers.user_id = order.user_id
    AND (customers.name = order.customer_name OR customers.email = order.customer_email)

Zero or one customer is matched per order. When several customers share a
name and the order carries no email, the oldest customer wins.

Rollups are adjusted incrementally inside the order write's transaction
(insert: +1/+amount, delete: the exact inverse, update: inverse-then-reapply).
An order with no matching customer is simply not counted anywhere.

Every adjustment runs under a savepoint: if it fails, only the rollup is
rolled back and logged, the order write itself still commits.
"""

import logging
import sqlite3
from typing import Optional
from contextlib import contextmanager

log = logging.getLogger("orderbuddy.rollup")


def _blank(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def find_matching_customer(conn, owner: str, name, email) -> Optional[dict]:
    """The one customer an order with (name, email) counts towards, or None."""
    name, email = _blank(name), _blank(email)
    if not name and not email:
        return None
    row = conn.execute("""
        SELECT * FROM customers
        WHERE user_id=? AND (name=? OR email=?)
        ORDER BY created_at, id
        LIMIT 1
    """, (owner, name, email)).fetchone()
    return dict(row) if row else None


def _match_for(conn, order: dict) -> Optional[dict]:
    return find_matching_customer(conn, order.get("user_id"),
                                  order.get("customer_name"), order.get("customer_email"))


def _adjust(conn, customer_id: int, orders_delta: int, spent_delta: float):
    conn.execute("""
        UPDATE customers
        SET total_orders = total_orders + ?,
            total_spent = ROUND(total_spent + ?, 2)
        WHERE id=?
    """, (orders_delta, spent_delta, customer_id))


@contextmanager
def _savepoint(conn, what: str):
    conn.execute("SAVEPOINT rollup")
    try:
        yield
    except sqlite3.Error as e:
        conn.execute("ROLLBACK TO SAVEPOINT rollup")
        conn.execute("RELEASE SAVEPOINT rollup")
        log.warning("Customer rollup failed (%s), order write kept: %s", what, e)
    else:
        conn.execute("RELEASE SAVEPOINT rollup")


def apply_insert(conn, order: dict):
    """Count a newly inserted order. Returns the matched customer id or None."""
    matched = None
    with _savepoint(conn, f"insert {order.get('order_id')}"):
        customer = _match_for(conn, order)
        if customer:
            _adjust(conn, customer["id"], 1, order.get("order_amount") or 0)
            matched = customer["id"]
    return matched


def apply_delete(conn, order: dict):
    """Exact inverse of apply_insert for a deleted order."""
    matched = None
    with _savepoint(conn, f"delete {order.get('order_id')}"):
        customer = _match_for(conn, order)
        if customer:
            _adjust(conn, customer["id"], -1, -(order.get("order_amount") or 0))
            matched = customer["id"]
    return matched


def apply_update(conn, old: dict, new: dict):
    """Move an updated order's contribution if its amount or matched customer changed.

    Returns (old_customer_id, new_customer_id).
    """
    old_id = new_id = None
    with _savepoint(conn, f"update {new.get('order_id')}"):
        old_match = _match_for(conn, old)
        new_match = _match_for(conn, new)
        old_id = old_match["id"] if old_match else None
        new_id = new_match["id"] if new_match else None
        old_amount = old.get("order_amount") or 0
        new_amount = new.get("order_amount") or 0
        if old_id == new_id and old_amount == new_amount:
            return old_id, new_id
        if old_id is not None:
            _adjust(conn, old_id, -1, -old_amount)
        if new_id is not None:
            _adjust(conn, new_id, 1, new_amount)
    return old_id, new_id


# ── Full recompute ────────────────────────────────────────────────────────────
def recalculate_customer(conn, customer: dict) -> dict:
    """Recompute one customer's rollups from the orders whose match it is.

    Returns {"total_orders", "total_spent"} as stored.
    """
    rows = conn.execute("""
        SELECT customer_name, customer_email, order_amount FROM orders
        WHERE user_id=? AND (customer_name=? OR customer_email=?)
    """, (customer["user_id"], _blank(customer.get("name")),
          _blank(customer.get("email")))).fetchall()
    count, spent = 0, 0.0
    for r in rows:
        match = find_matching_customer(conn, customer["user_id"],
                                       r["customer_name"], r["customer_email"])
        if match and match["id"] == customer["id"]:
            count += 1
            spent += r["order_amount"] or 0
    spent = round(spent, 2)
    conn.execute("UPDATE customers SET total_orders=?, total_spent=? WHERE id=?",
                 (count, spent, customer["id"]))
    return {"total_orders": count, "total_spent": spent}


def reconcile_rollups(conn, owner: str) -> list:
    """Recompute every customer of `owner`. Returns the customers that drifted."""
    drifted = []
    customers = conn.execute("SELECT * FROM customers WHERE user_id=? ORDER BY created_at, id",
                             (owner,)).fetchall()
    for row in customers:
        c = dict(row)
        fresh = recalculate_customer(conn, c)
        if (fresh["total_orders"] != c["total_orders"]
                or round(fresh["total_spent"] - (c["total_spent"] or 0), 2) != 0):
            drifted.append({
                "id": c["id"], "name": c["name"],
                "was": {"total_orders": c["total_orders"], "total_spent": c["total_spent"]},
                "now": fresh,
            })
    if drifted:
        log.info("Rollup reconcile for %s corrected %d customers", owner, len(drifted))
    return drifted
