"""Tests for order derivation: totals, completed_at, last_activity_at."""

from datetime import datetime, timezone, timedelta

import pytest

from order_buddy.core.derivation import derive_order, calculate_order_total, calculate_tax
from order_buddy.core.timeutil import parse_timestamp

T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _candidate(**fields):
    row = {"order_id": "ORD-001", "user_id": "alice", "customer_name": "Acme Corp",
           "order_amount": 100, "status": "pending"}
    row.update(fields)
    return row


# ═══════════════════════════════════════════════════════════════════════
# Totals
# ═══════════════════════════════════════════════════════════════════════

class TestTotals:
    def test_amount_tax_discount(self):
        row = derive_order(_candidate(order_amount=1000, tax_rate=10, discount_amount=50), now=T0)
        assert row["total_amount"] == 1050
        assert row["tax_amount"] == 100

    def test_tax_and_discount_default_to_zero(self):
        row = derive_order(_candidate(order_amount=250), now=T0)
        assert row["total_amount"] == 250
        assert row["tax_amount"] == 0
        assert row["tax_rate"] == 0
        assert row["discount_amount"] == 0

    def test_none_tax_and_discount(self):
        row = derive_order(_candidate(order_amount=80, tax_rate=None, discount_amount=None), now=T0)
        assert row["total_amount"] == 80

    def test_negative_total_not_clamped(self):
        assert calculate_order_total(100, 0, 150) == -50

    def test_rounded_to_cents(self):
        assert calculate_order_total(19.99, 7.25, 0) == 21.44
        assert calculate_tax(19.99, 7.25) == 1.45

    def test_client_totals_ignored(self):
        row = derive_order(_candidate(order_amount=100, total_amount=999999, tax_amount=5), now=T0)
        assert row["total_amount"] == 100
        assert row["tax_amount"] == 0

    def test_recomputed_on_update(self):
        old = derive_order(_candidate(order_amount=100, tax_rate=10), now=T0)
        new = derive_order({**old, "order_amount": 200}, old=old, now=T0 + timedelta(minutes=1))
        assert new["total_amount"] == 220

    def test_update_that_drops_tax_field(self):
        old = derive_order(_candidate(order_amount=100, tax_rate=10), now=T0)
        changed = {k: v for k, v in old.items() if k != "tax_rate"}
        new = derive_order(changed, old=old, now=T0 + timedelta(minutes=1))
        assert new["total_amount"] == 100

    def test_non_numeric_amount_raises(self):
        with pytest.raises(ValueError):
            derive_order(_candidate(order_amount="lots"), now=T0)

    def test_bool_amount_raises(self):
        with pytest.raises(ValueError):
            derive_order(_candidate(order_amount=True), now=T0)

    def test_input_not_mutated(self):
        cand = _candidate(total_amount=5)
        derive_order(cand, now=T0)
        assert cand["total_amount"] == 5
        assert "last_activity_at" not in cand


# ═══════════════════════════════════════════════════════════════════════
# completed_at
# ═══════════════════════════════════════════════════════════════════════

class TestCompletedAt:
    def test_set_on_transition(self):
        old = derive_order(_candidate(), now=T0)
        assert old["completed_at"] is None
        t1 = T0 + timedelta(hours=1)
        new = derive_order({**old, "status": "completed"}, old=old, now=t1)
        assert parse_timestamp(new["completed_at"]) == t1

    def test_untouched_while_completed(self):
        old = derive_order(_candidate(), now=T0)
        done = derive_order({**old, "status": "completed"}, old=old, now=T0 + timedelta(hours=1))
        later = derive_order({**done, "notes": "thanks"}, old=done, now=T0 + timedelta(days=2))
        assert later["completed_at"] == done["completed_at"]

    def test_not_cleared_when_reopened(self):
        old = derive_order(_candidate(status="completed"), now=T0)
        reopened = derive_order({**old, "status": "processing"}, old=old, now=T0 + timedelta(hours=1))
        assert reopened["completed_at"] == old["completed_at"]

    def test_insert_as_completed(self):
        row = derive_order(_candidate(status="completed"), now=T0)
        assert parse_timestamp(row["completed_at"]) == T0

    def test_client_completed_at_ignored(self):
        row = derive_order(_candidate(completed_at="2020-01-01T00:00:00+00:00"), now=T0)
        assert row["completed_at"] is None


# ═══════════════════════════════════════════════════════════════════════
# last_activity_at / created_at
# ═══════════════════════════════════════════════════════════════════════

class TestActivityStamps:
    def test_insert_stamps(self):
        row = derive_order(_candidate(), now=T0)
        assert parse_timestamp(row["last_activity_at"]) == T0
        assert row["created_at"] == row["updated_at"] == row["last_activity_at"]

    def test_order_date_defaults_to_now(self):
        row = derive_order(_candidate(), now=T0)
        assert parse_timestamp(row["order_date"]) == T0

    def test_order_date_kept_when_given(self):
        row = derive_order(_candidate(order_date="2025-01-15"), now=T0)
        assert row["order_date"] == "2025-01-15"

    def test_strictly_increasing_when_clock_stalls(self):
        old = derive_order(_candidate(), now=T0)
        new = derive_order({**old, "notes": "x"}, old=old, now=T0)
        assert parse_timestamp(new["last_activity_at"]) > parse_timestamp(old["last_activity_at"])

    def test_strictly_increasing_when_clock_goes_back(self):
        old = derive_order(_candidate(), now=T0)
        new = derive_order({**old}, old=old, now=T0 - timedelta(seconds=5))
        assert parse_timestamp(new["last_activity_at"]) > parse_timestamp(old["last_activity_at"])

    def test_created_at_preserved_on_update(self):
        old = derive_order(_candidate(), now=T0)
        new = derive_order({**old, "created_at": "1999-01-01"}, old=old, now=T0 + timedelta(days=1))
        assert new["created_at"] == old["created_at"]
        assert new["updated_at"] == new["last_activity_at"]
