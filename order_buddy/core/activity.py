"""
activity.py — Order activity audit trail (after-commit)

Called by the ledger once the order transaction has committed. Reads the
committed row back in its own connection and appends one order_activities
entry:

  created  → new_values only
  updated  → old_values + new_values

Snapshots are opaque JSON objects: whatever columns the orders table has
today. Nothing here writes to orders, so logging can never re-trigger
derivation or itself.

Audit is best-effort. A failed insert is logged and swallowed; the order
write it describes has already committed and stays.
"""

import json
import sqlite3
import logging
from typing import Optional

from order_buddy.core.db import get_db, _jl
from order_buddy.core.timeutil import now_utc, to_iso

log = logging.getLogger("orderbuddy.activity")

DESCRIPTIONS = {
    "created": "Order created",
    "updated": "Order updated",
}


def snapshot(order: dict) -> dict:
    """JSON-safe copy of an order row for old_values/new_values."""
    if not order:
        return None
    snap = {}
    for key, value in dict(order).items():
        if key == "tags":
            value = _jl(value, [])
        snap[key] = value
    return snap


def log_order_activity(activity_type: str, order_pk: int, old: dict = None) -> Optional[int]:
    """Append one activity row for the committed order `order_pk`.

    Returns the activity id, or None if the entry could not be written.
    """
    if activity_type not in DESCRIPTIONS:
        log.warning("Unknown activity type %r for order pk=%s", activity_type, order_pk)
        return None
    try:
        with get_db() as conn:
            row = conn.execute("SELECT * FROM orders WHERE id=?", (order_pk,)).fetchone()
            if row is None:
                log.warning("Activity %s skipped: order pk=%s not committed", activity_type, order_pk)
                return None
            new_values = snapshot(dict(row))
            old_values = snapshot(old) if activity_type == "updated" else None
            cur = conn.execute("""
                INSERT INTO order_activities
                  (order_id, user_id, activity_type, description, old_values, new_values, created_at)
                VALUES (?,?,?,?,?,?,?)
            """, (
                order_pk, new_values.get("user_id"), activity_type,
                DESCRIPTIONS[activity_type],
                json.dumps(old_values, default=str) if old_values is not None else None,
                json.dumps(new_values, default=str),
                to_iso(now_utc()),
            ))
            return cur.lastrowid
    except sqlite3.Error as e:
        log.warning("Activity log failed for order pk=%s (%s): %s", order_pk, activity_type, e)
        return None


def _activity_from_row(row) -> dict:
    d = dict(row)
    d["old_values"] = _jl(d.get("old_values"))
    d["new_values"] = _jl(d.get("new_values"))
    return d


def get_order_activity(owner: str, order_id: str = None, limit: int = 10) -> list:
    """Newest-first activity for the owner, optionally for one order (by ORD- id)."""
    sql = """
        SELECT a.id, a.order_id AS order_pk, o.order_id AS order_id, a.user_id,
               a.activity_type, a.description, a.old_values, a.new_values, a.created_at
        FROM order_activities a
        JOIN orders o ON o.id = a.order_id
        WHERE a.user_id=?
    """
    params = [owner]
    if order_id:
        sql += " AND o.order_id=?"
        params.append(order_id)
    sql += " ORDER BY a.created_at DESC, a.id DESC LIMIT ?"
    params.append(int(limit))
    with get_db() as conn:
        rows = conn.execute(sql, params).fetchall()
    return [_activity_from_row(r) for r in rows]
