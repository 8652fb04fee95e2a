"""
order_buddy/core/db.py — Persistent SQLite Database Layer

One SQLite file (DATA_DIR/orders.db) holds every table. WAL mode lets the two
gunicorn workers read while one writes; the process lock serialises writers
inside a worker.

TABLES:
  orders             one row per order, owner-scoped by user_id
  customers          customer profiles + order rollups (total_orders, total_spent)
  order_activities   append-only audit trail of order inserts/updates
  notifications      dashboard bell entries per owner
  audit_trail        security events (rate limiting)

The CHECK constraints below are the store's last line of defence: a row with
an unknown status/priority/currency or an out-of-range amount never persists,
whatever the caller validated.
"""

import os
import json
import sqlite3
import logging
import threading
from contextlib import contextmanager

from order_buddy.core.paths import DB_PATH

log = logging.getLogger("orderbuddy.db")

ORDER_STATUSES = ("draft", "pending", "approved", "processing", "shipped",
                  "delivered", "completed", "cancelled", "refunded")
ORDER_PRIORITIES = ("low", "medium", "high", "urgent")
CURRENCIES = ("INR", "USD", "EUR", "GBP", "JPY", "CAD", "AUD")
ACTIVITY_TYPES = ("created", "updated")

_db_lock = threading.RLock()


# ── Connection factory ────────────────────────────────────────────────────────
@contextmanager
def get_db():
    """Thread-safe SQLite connection. Commits on success, rolls back on error.

    One `with get_db()` block is one transaction.
    """
    with _db_lock:
        conn = sqlite3.connect(DB_PATH, timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def _in(values) -> str:
    return ", ".join(f"'{v}'" for v in values)


# ── Schema ────────────────────────────────────────────────────────────────────
SCHEMA = f"""
CREATE TABLE IF NOT EXISTS orders (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id          TEXT NOT NULL,            -- ORD-001, unique per owner
    user_id           TEXT NOT NULL,
    customer_name     TEXT NOT NULL,
    customer_email    TEXT,
    customer_phone    TEXT,
    order_amount      REAL NOT NULL CHECK (order_amount >= 0),
    tax_rate          REAL DEFAULT 0 CHECK (tax_rate >= 0 AND tax_rate <= 100),
    tax_amount        REAL DEFAULT 0,
    discount_amount   REAL DEFAULT 0 CHECK (discount_amount >= 0),
    total_amount      REAL,
    status            TEXT NOT NULL DEFAULT 'pending' CHECK (status IN ({_in(ORDER_STATUSES)})),
    priority          TEXT NOT NULL DEFAULT 'medium' CHECK (priority IN ({_in(ORDER_PRIORITIES)})),
    currency          TEXT NOT NULL DEFAULT 'USD' CHECK (currency IN ({_in(CURRENCIES)})),
    order_date        TEXT NOT NULL,
    due_date          TEXT,
    completed_at      TEXT,
    last_activity_at  TEXT,
    notes             TEXT,
    tags              TEXT DEFAULT '[]',        -- JSON array of strings
    shipping_address  TEXT,
    billing_address   TEXT,
    invoice_file_uri  TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,
    UNIQUE (user_id, order_id)
);

CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_customer_name ON orders(customer_name);
CREATE INDEX IF NOT EXISTS idx_orders_customer_email ON orders(customer_email);
CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
CREATE INDEX IF NOT EXISTS idx_orders_priority ON orders(priority);
CREATE INDEX IF NOT EXISTS idx_orders_order_date ON orders(order_date);

CREATE TABLE IF NOT EXISTS customers (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    name            TEXT NOT NULL,
    email           TEXT,
    phone           TEXT,
    company         TEXT,
    address         TEXT,
    notes           TEXT,
    total_orders    INTEGER NOT NULL DEFAULT 0,
    total_spent     REAL NOT NULL DEFAULT 0,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_customers_user_name ON customers(user_id, name);
CREATE INDEX IF NOT EXISTS idx_customers_user_email ON customers(user_id, email);

CREATE TABLE IF NOT EXISTS order_activities (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id        INTEGER NOT NULL REFERENCES orders(id) ON DELETE CASCADE,
    user_id         TEXT,
    activity_type   TEXT NOT NULL CHECK (activity_type IN ({_in(ACTIVITY_TYPES)})),
    description     TEXT NOT NULL,
    old_values      TEXT,                       -- JSON object snapshot or NULL
    new_values      TEXT,                       -- JSON object snapshot
    created_at      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_activity_order ON order_activities(order_id);
CREATE INDEX IF NOT EXISTS idx_activity_user ON order_activities(user_id, created_at);

CREATE TABLE IF NOT EXISTS notifications (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    created_at      TEXT NOT NULL,
    event_type      TEXT NOT NULL,
    urgency         TEXT DEFAULT 'info',        -- info|success|warning|error
    title           TEXT NOT NULL,
    body            TEXT,
    order_id        TEXT,
    is_read         INTEGER DEFAULT 0,
    email_sent      INTEGER DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_notif_unread ON notifications(user_id, is_read, created_at);

CREATE TABLE IF NOT EXISTS audit_trail (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp       TEXT NOT NULL,
    action          TEXT NOT NULL,
    details         TEXT,
    ip_address      TEXT,
    user_agent      TEXT,
    metadata        TEXT
);
"""

TABLES = ("orders", "customers", "order_activities", "notifications", "audit_trail")


def init_db():
    """Create all tables if they don't exist. Safe to call multiple times."""
    os.makedirs(os.path.dirname(DB_PATH) or ".", exist_ok=True)
    with get_db() as conn:
        conn.executescript(SCHEMA)
    log.info("DB initialized at %s", DB_PATH)
    return True


# ── DB stats ─────────────────────────────────────────────────────────────────
def get_db_stats() -> dict:
    """Return row counts for all tables, used in /api/health."""
    stats = {"db_path": DB_PATH, "db_size_kb": 0}
    try:
        stats["db_size_kb"] = round(os.path.getsize(DB_PATH) / 1024, 1)
    except FileNotFoundError:
        pass
    with get_db() as conn:
        for table in TABLES:
            try:
                stats[table] = conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            except sqlite3.Error:
                stats[table] = 0
    return stats


def list_tables() -> list:
    """Names of the tables that actually exist in the database file."""
    with get_db() as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'").fetchall()
    return sorted(r["name"] for r in rows)


# ── Startup ───────────────────────────────────────────────────────────────────
def startup() -> dict:
    """Initialize DB. Call once at app start."""
    init_db()
    stats = get_db_stats()
    log.info("DB ready: %s",
             {k: v for k, v in stats.items() if k not in ("db_path", "db_size_kb")})
    return {"ok": True, "db_path": DB_PATH, "stats": stats}


# ── Column helpers ────────────────────────────────────────────────────────────
def _jl(val, default=None):
    """JSON-load a DB column value safely."""
    if val is None:
        return default
    if isinstance(val, (dict, list)):
        return val
    try:
        return json.loads(val)
    except (TypeError, ValueError):
        return default


def _jd(val) -> str:
    """JSON-dump a value for DB storage."""
    if val is None:
        return None
    if isinstance(val, str):
        return val
    return json.dumps(val, default=str)
