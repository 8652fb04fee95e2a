"""
derivation.py — Before-persist order derivation

Runs on every order insert/update, after validation and before the row is
written. Owns the derived columns:

  total_amount      order_amount + order_amount*tax_rate/100 - discount_amount
  tax_amount        order_amount*tax_rate/100
  completed_at      stamped once, on the write that moves status into 'completed'
  last_activity_at  stamped on every write, strictly after the previous stamp
  updated_at        mirrors last_activity_at
  created_at        insert only

Row-local only: this module never opens a connection. Audit logging and
customer rollups happen at other stages (see ledger.py), which is what keeps
a write from re-entering itself.
"""

import logging
from datetime import timedelta

from order_buddy.core.timeutil import now_utc, parse_timestamp, to_iso

log = logging.getLogger("orderbuddy.derivation")

# Never taken from client input.
DERIVED_FIELDS = ("total_amount", "tax_amount", "completed_at",
                  "last_activity_at", "created_at", "updated_at")


def _number(value, field: str) -> float:
    """COALESCE(value, 0) as float. Non-numeric input is fatal to the write."""
    if value is None or value == "":
        return 0.0
    if isinstance(value, bool):
        raise ValueError(f"{field} must be numeric, got {value!r}")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be numeric, got {value!r}")


def calculate_tax(order_amount, tax_rate=0) -> float:
    amount = _number(order_amount, "order_amount")
    return round(amount * _number(tax_rate, "tax_rate") / 100, 2)


def calculate_order_total(order_amount, tax_rate=0, discount_amount=0) -> float:
    """Total for an order. Not clamped: a discount bigger than the subtotal
    gives a negative total."""
    amount = _number(order_amount, "order_amount")
    rate = _number(tax_rate, "tax_rate")
    discount = _number(discount_amount, "discount_amount")
    return round(amount + (amount * rate / 100) - discount, 2)


def _next_activity_stamp(old: dict, now):
    """`now`, nudged past the previous stamp if the clock hasn't moved on."""
    if not old or not old.get("last_activity_at"):
        return now
    prev = parse_timestamp(old["last_activity_at"])
    if prev >= now:
        log.debug("Clock behind last_activity_at for %s, nudging", old.get("order_id"))
        return prev + timedelta(microseconds=1)
    return now


def derive_order(new: dict, old: dict = None, now=None) -> dict:
    """Return the row to persist for candidate `new` (and prior row `old` on update).

    `new` is the complete candidate row: on update the caller merges its
    changes over the prior row first. Neither argument is mutated.
    """
    row = {k: v for k, v in new.items() if k not in DERIVED_FIELDS}
    now = parse_timestamp(now) if now is not None else now_utc()
    stamp = _next_activity_stamp(old, now)
    stamp_iso = to_iso(stamp)

    row["order_amount"] = _number(row.get("order_amount"), "order_amount")
    row["tax_rate"] = _number(row.get("tax_rate"), "tax_rate")
    row["discount_amount"] = _number(row.get("discount_amount"), "discount_amount")
    row["tax_amount"] = calculate_tax(row["order_amount"], row["tax_rate"])
    row["total_amount"] = calculate_order_total(
        row["order_amount"], row["tax_rate"], row["discount_amount"])

    was_completed = bool(old) and old.get("status") == "completed"
    if row.get("status") == "completed" and not was_completed:
        row["completed_at"] = stamp_iso
    else:
        row["completed_at"] = old.get("completed_at") if old else None

    row["last_activity_at"] = stamp_iso
    row["updated_at"] = stamp_iso
    if old:
        row["created_at"] = old.get("created_at") or stamp_iso
    else:
        row["created_at"] = stamp_iso
        if not row.get("order_date"):
            row["order_date"] = stamp_iso
    return row
