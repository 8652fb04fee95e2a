"""
Order Buddy API — JSON routes
All routes live on one blueprint; app.py registers it.

Every route except /api/health requires Basic auth. The login name is the
owner id, and every call into the core passes it through, so one owner's
orders, customers, activity and notifications are invisible to another.

Result dicts from the core map to HTTP status codes in _respond():
  ok                → 200 (201 on create)
  not_found         → 404
  field-level error → 400
  storage_error     → 500  (generic message only)
"""

import time
import sqlite3
import logging

from flask import Blueprint, request, jsonify, Response, g

from order_buddy.core import db
from order_buddy.core.security import auth_required, rate_limit, current_owner
from order_buddy.core.ledger import (create_order, update_order, delete_order,
                                     get_order, list_orders)
from order_buddy.core.customers import (create_customer, update_customer, delete_customer,
                                        get_customer, list_customers, reconcile_customers)
from order_buddy.core.activity import get_order_activity
from order_buddy.core.search import filter_orders, paginate_orders
from order_buddy.core.analytics import compute_analytics, compute_order_summary, parse_window
from order_buddy.core.export import (export_orders_csv, export_filename, run_bulk_action,
                                     DEFAULT_EXPORT_COLUMNS)
from order_buddy.agents import notify_agent

log = logging.getLogger("orderbuddy.api")

bp = Blueprint("orderbuddy", __name__)


# ── Request-level structured logging ────────────────────────────────────────
@bp.before_app_request
def _log_request_start():
    g._start_time = time.time()


@bp.after_app_request
def _log_request_end(response):
    start = getattr(g, "_start_time", None)
    if start is not None and request.path != "/api/health":
        duration_ms = round((time.time() - start) * 1000, 1)
        log.info("%s %s → %d (%.0fms)",
                 request.method, request.path, response.status_code, duration_ms,
                 extra={"route": request.path, "method": request.method,
                        "status": response.status_code, "duration_ms": duration_ms,
                        "owner": getattr(g, "owner", None)})
    return response


# ── Helpers ──────────────────────────────────────────────────────────────────
def _respond(result: dict, ok_status: int = 200):
    if result.get("ok"):
        status = ok_status
    elif result.get("not_found"):
        status = 404
    elif result.get("storage_error"):
        status = 500
    else:
        status = 400
    body = {k: v for k, v in result.items() if k not in ("not_found", "storage_error")}
    return jsonify(body), status


def _body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _csv_response(text: str, filename: str):
    return Response(text, mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={filename}"})


def _order_filters(source) -> dict:
    keys = ("search", "status", "priority", "currency", "min_amount", "max_amount",
            "date_from", "date_to", "tags")
    return {k: source.get(k) for k in keys if source.get(k) not in (None, "", [])}


# ═══════════════════════════════════════════════════════════════════════
# Health
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/health")
def api_health():
    """Liveness + DB stats. No auth so load balancers can hit it."""
    try:
        stats = db.get_db_stats()
    except sqlite3.Error as e:
        log.error("Health check DB error: %s", e)
        return jsonify({"ok": False, "status": "error", "error": "Database unavailable"}), 503
    return jsonify({"ok": True, "status": "ok", "db": stats,
                    "notify": notify_agent.get_agent_status()})


# ═══════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/orders")
@auth_required
@rate_limit("api")
def api_orders_list():
    args = request.args
    try:
        orders = filter_orders(list_orders(current_owner()), _order_filters(args))
        page = paginate_orders(orders,
                               page=int(args.get("page", 1)),
                               limit=int(args.get("limit", 20)),
                               sort_by=args.get("sort_by", "created_at"),
                               sort_order=args.get("sort_order", "desc"))
    except ValueError as e:
        return jsonify({"ok": False, "action": "list", "error": str(e)}), 400
    return jsonify({"ok": True, **page})


@bp.route("/api/orders", methods=["POST"])
@auth_required
@rate_limit("api")
def api_orders_create():
    return _respond(create_order(current_owner(), _body()), ok_status=201)


@bp.route("/api/orders/<order_id>")
@auth_required
@rate_limit("api")
def api_order_get(order_id):
    return _respond(get_order(current_owner(), order_id))


@bp.route("/api/orders/<order_id>", methods=["POST"])
@auth_required
@rate_limit("api")
def api_order_update(order_id):
    return _respond(update_order(current_owner(), order_id, _body()))


@bp.route("/api/orders/<order_id>", methods=["DELETE"])
@auth_required
@rate_limit("api")
def api_order_delete(order_id):
    return _respond(delete_order(current_owner(), order_id))


@bp.route("/api/orders/<order_id>/activity")
@auth_required
@rate_limit("api")
def api_order_activity(order_id):
    owner = current_owner()
    if not get_order(owner, order_id)["ok"]:
        return jsonify({"ok": False, "action": "get", "error": "Order not found"}), 404
    limit = request.args.get("limit", 50, type=int)
    return jsonify({"ok": True, "activity": get_order_activity(owner, order_id, limit=limit)})


@bp.route("/api/activity")
@auth_required
@rate_limit("api")
def api_activity_recent():
    limit = request.args.get("limit", 10, type=int)
    return jsonify({"ok": True, "activity": get_order_activity(current_owner(), limit=limit)})


# ── Bulk + export ────────────────────────────────────────────────────────────
@bp.route("/api/orders/bulk", methods=["POST"])
@auth_required
@rate_limit("bulk")
def api_orders_bulk():
    data = _body()
    result = run_bulk_action(current_owner(), data.get("order_ids") or [],
                             data.get("action") or "", value=data.get("value"),
                             columns=data.get("columns"))
    if result["ok"] and result["action"] == "export":
        return _csv_response(result["csv"], result["filename"])
    return _respond(result)


@bp.route("/api/orders/export", methods=["POST"])
@auth_required
@rate_limit("bulk")
def api_orders_export():
    """CSV of the owner's orders: the listed order_ids, or everything matching filters."""
    data = _body()
    columns = data.get("columns", DEFAULT_EXPORT_COLUMNS)
    owner = current_owner()
    try:
        if data.get("order_ids"):
            orders = list_orders(owner, [str(i) for i in data["order_ids"]])
        else:
            orders = filter_orders(list_orders(owner), _order_filters(data.get("filters") or {}))
        text = export_orders_csv(orders, columns)
    except ValueError as e:
        return jsonify({"ok": False, "action": "export", "error": str(e)}), 400
    log.info("Export of %d orders (%d columns) by %s", len(orders), len(columns), owner)
    return _csv_response(text, export_filename())


# ═══════════════════════════════════════════════════════════════════════
# Analytics
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/analytics")
@auth_required
@rate_limit("api")
def api_analytics():
    owner = current_owner()
    try:
        days = parse_window(request.args.get("range", "30d"))
    except ValueError as e:
        return jsonify({"ok": False, "action": "analytics", "error": str(e)}), 400
    result = compute_analytics(list_orders(owner), list_customers(owner), window_days=days)
    return jsonify({"ok": True, **result})


@bp.route("/api/analytics/summary")
@auth_required
@rate_limit("api")
def api_analytics_summary():
    return jsonify({"ok": True, **compute_order_summary(list_orders(current_owner()))})


# ═══════════════════════════════════════════════════════════════════════
# Customers
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/customers")
@auth_required
@rate_limit("api")
def api_customers_list():
    customers = list_customers(current_owner(), request.args.get("q", "").strip())
    return jsonify({"ok": True, "customers": customers, "total": len(customers)})


@bp.route("/api/customers", methods=["POST"])
@auth_required
@rate_limit("api")
def api_customers_create():
    return _respond(create_customer(current_owner(), _body()), ok_status=201)


@bp.route("/api/customers/reconcile", methods=["POST"])
@auth_required
@rate_limit("bulk")
def api_customers_reconcile():
    return _respond(reconcile_customers(current_owner()))


@bp.route("/api/customers/<int:customer_id>")
@auth_required
@rate_limit("api")
def api_customer_get(customer_id):
    return _respond(get_customer(current_owner(), customer_id))


@bp.route("/api/customers/<int:customer_id>", methods=["POST"])
@auth_required
@rate_limit("api")
def api_customer_update(customer_id):
    return _respond(update_customer(current_owner(), customer_id, _body()))


@bp.route("/api/customers/<int:customer_id>", methods=["DELETE"])
@auth_required
@rate_limit("api")
def api_customer_delete(customer_id):
    return _respond(delete_customer(current_owner(), customer_id))


# ═══════════════════════════════════════════════════════════════════════
# Notifications (bell)
# ═══════════════════════════════════════════════════════════════════════

@bp.route("/api/notifications")
@auth_required
@rate_limit("api")
def api_notifications():
    owner = current_owner()
    unread_only = request.args.get("unread", "").lower() in ("1", "true", "yes")
    limit = request.args.get("limit", 30, type=int)
    return jsonify({
        "ok": True,
        "notifications": notify_agent.list_notifications(owner, limit=limit, unread_only=unread_only),
        "unread": notify_agent.get_unread_count(owner),
    })


@bp.route("/api/notifications/read-all", methods=["POST"])
@auth_required
@rate_limit("api")
def api_notifications_read_all():
    return _respond(notify_agent.mark_all_read(current_owner()))


@bp.route("/api/notifications/<int:notification_id>/read", methods=["POST"])
@auth_required
@rate_limit("api")
def api_notification_read(notification_id):
    return _respond(notify_agent.mark_read(current_owner(), notification_id))


@bp.route("/api/notifications/<int:notification_id>", methods=["DELETE"])
@auth_required
@rate_limit("api")
def api_notification_delete(notification_id):
    return _respond(notify_agent.delete_notification(current_owner(), notification_id))
