"""
Security Middleware — Auth, Rate Limiting, Headers
==================================================

Auth:
- HTTP Basic auth on every API route except /api/health
- The authenticated username IS the owner id: every order, customer,
  activity and notification query is scoped by it
- Logins come from secrets.get_users() (DASH_USERS or DASH_USER/DASH_PASS)

Throttling:
- In-memory token bucket per owner (or IP when unauthenticated) and tier
- A 429 is returned and written to audit_trail when a bucket runs dry
"""

import os
import hmac
import json
import time
import sqlite3
import logging
import functools
from threading import Lock

from flask import request, jsonify, g, Response

from order_buddy.core.db import get_db
from order_buddy.core.secrets import get_users
from order_buddy.core.timeutil import now_utc, to_iso

log = logging.getLogger("orderbuddy.security")

# ═══════════════════════════════════════════════════════════════════════════════
# Authentication
# ═══════════════════════════════════════════════════════════════════════════════

def check_auth(username: str, password: str) -> bool:
    expected = get_users().get(username or "")
    if not expected:
        return False
    return hmac.compare_digest(str(password or ""), expected)


def auth_required(f):
    """Require Basic auth; the username becomes g.owner."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth = request.authorization
        if not auth or not check_auth(auth.username, auth.password):
            return Response(
                json.dumps({"ok": False, "error": "Login required"}),
                401, {"WWW-Authenticate": 'Basic realm="Order Buddy"',
                      "Content-Type": "application/json"})
        g.owner = auth.username
        return f(*args, **kwargs)
    return decorated


def current_owner() -> str:
    """Owner id of the authenticated request."""
    return g.owner


# ═══════════════════════════════════════════════════════════════════════════════
# Rate Limiting
# ═══════════════════════════════════════════════════════════════════════════════

class RateLimiter:
    """Token buckets keyed by "<owner>:<tier>", held in process memory."""

    SWEEP_EVERY = 300  # seconds between idle-bucket sweeps

    def __init__(self):
        self._buckets = {}          # key -> (tokens, last_seen)
        self._lock = Lock()
        self._last_sweep = time.time()

    def check(self, key: str, max_tokens: int = 60, refill_rate: float = 1.0) -> bool:
        """Spend one token from `key`'s bucket; False when it is empty.

        A new bucket starts full. refill_rate is tokens per second, capped
        at max_tokens.
        """
        stamp = time.time()
        with self._lock:
            tokens, seen = self._buckets.get(key, (max_tokens, stamp))
            tokens = min(max_tokens, tokens + (stamp - seen) * refill_rate)
            allowed = tokens >= 1
            self._buckets[key] = (tokens - 1 if allowed else tokens, stamp)
            sweep = stamp - self._last_sweep >= self.SWEEP_EVERY
            if sweep:
                self._last_sweep = stamp
        if sweep:
            self.cleanup()
        return allowed

    def reset(self):
        with self._lock:
            self._buckets.clear()

    def cleanup(self, max_age: int = 3600):
        """Drop buckets idle for more than max_age seconds."""
        cutoff = time.time() - max_age
        with self._lock:
            for key in [k for k, (_, seen) in self._buckets.items() if seen < cutoff]:
                self._buckets.pop(key)


_limiter = RateLimiter()

# tier -> bucket size / refill per second
RATE_LIMITS = {
    "default": {"max_tokens": 60, "refill_rate": 2.0},
    "api":     {"max_tokens": 30, "refill_rate": 1.0},
    "bulk":    {"max_tokens": 10, "refill_rate": 0.2},   # bulk actions + CSV export
}


def rate_limit(tier: str = "default"):
    """Per-owner throttle for a route. Stack it under @auth_required."""
    limits = RATE_LIMITS.get(tier, RATE_LIMITS["default"])

    def decorator(f):
        @functools.wraps(f)
        def throttled(*args, **kwargs):
            if os.environ.get("DISABLE_RATE_LIMIT", "").lower() != "true":
                who = getattr(g, "owner", None) or request.remote_addr or "unknown"
                if not _limiter.check(f"{who}:{tier}", **limits):
                    log.warning("Throttled %s on %s (tier=%s)", who, request.path, tier)
                    _log_audit("rate_limited", f"{who} hit the {tier} limit",
                               {"path": request.path, "tier": tier})
                    return jsonify({"ok": False, "error": "Too many requests, slow down"}), 429
            return f(*args, **kwargs)
        return throttled
    return decorator


# ═══════════════════════════════════════════════════════════════════════════════
# Audit Trail
# ═══════════════════════════════════════════════════════════════════════════════

def _log_audit(action: str, details: str = "", metadata: dict = None):
    """Record a security event. Never fails the request."""
    try:
        with get_db() as conn:
            conn.execute(
                "INSERT INTO audit_trail (timestamp, action, details, ip_address, user_agent, metadata) "
                "VALUES (?,?,?,?,?,?)",
                (to_iso(now_utc()), action, details[:500],
                 request.remote_addr or "",
                 (request.user_agent.string[:200] if request.user_agent else ""),
                 json.dumps(metadata or {}, default=str)[:1000]))
    except sqlite3.Error as e:
        log.warning("Audit trail write failed (%s): %s", action, e)


def get_audit_events(action: str = None, limit: int = 50) -> list:
    sql = "SELECT * FROM audit_trail"
    params = []
    if action:
        sql += " WHERE action=?"
        params.append(action)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(int(limit))
    with get_db() as conn:
        return [dict(r) for r in conn.execute(sql, params).fetchall()]


# ═══════════════════════════════════════════════════════════════════════════════
# Response Headers
# ═══════════════════════════════════════════════════════════════════════════════

_STATIC_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def add_security_headers(response):
    response.headers.update(_STATIC_HEADERS)
    # keep a route's own Cache-Control
    response.headers.setdefault("Cache-Control", "no-store")
    return response


def init_security(app):
    """Hook response headers onto `app` and warn when nobody can log in."""
    app.after_request(add_security_headers)
    if not get_users():
        log.warning("No dashboard logins configured: set DASH_USERS or DASH_USER/DASH_PASS")
    log.info("Security ready: basic auth, per-owner throttling, response headers")
