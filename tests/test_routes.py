"""API route tests: auth, status codes, owner isolation, CSV downloads, rate limiting."""

import base64
import csv
import io

from order_buddy.core.security import get_audit_events


def _basic_auth_header(user, password):
    creds = base64.b64encode(f"{user}:{password}".encode()).decode()
    return {"Authorization": f"Basic {creds}"}


def _create(client, **fields):
    data = {"customer_name": "Acme Corp", "order_amount": 100}
    data.update(fields)
    resp = client.post("/api/orders", json=data)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["order"]


# ═══════════════════════════════════════════════════════════════════════
# Auth + health
# ═══════════════════════════════════════════════════════════════════════

class TestAuth:
    def test_health_is_public(self, anon_client):
        resp = anon_client.get("/api/health")
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["ok"] is True
        assert data["db"]["orders"] == 0
        assert data["notify"]["email_provider"] is None

    def test_orders_require_login(self, anon_client):
        resp = anon_client.get("/api/orders")
        assert resp.status_code == 401
        assert "Basic" in resp.headers["WWW-Authenticate"]
        assert resp.get_json()["ok"] is False

    def test_wrong_password(self, anon_client):
        resp = anon_client.get("/api/orders", headers=_basic_auth_header("alice", "nope"))
        assert resp.status_code == 401

    def test_unknown_user(self, anon_client):
        resp = anon_client.get("/api/orders", headers=_basic_auth_header("mallory", "x"))
        assert resp.status_code == 401

    def test_security_headers(self, client):
        resp = client.get("/api/orders")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "SAMEORIGIN"


# ═══════════════════════════════════════════════════════════════════════
# Orders
# ═══════════════════════════════════════════════════════════════════════

class TestOrderRoutes:
    def test_create(self, client):
        order = _create(client, tax_rate=10, discount_amount=50, order_amount=1000)
        assert order["order_id"] == "ORD-001"
        assert order["total_amount"] == 1050

    def test_create_invalid(self, client):
        resp = client.post("/api/orders", json={"customer_name": "", "order_amount": 5})
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["ok"] is False
        assert data["field"] == "customer_name"

    def test_create_nan_literal(self, client):
        resp = client.post("/api/orders", data='{"customer_name": "Acme", "order_amount": NaN}',
                           content_type="application/json")
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "order_amount"
        assert client.get("/api/orders").get_json()["total"] == 0

    def test_create_non_json(self, client):
        resp = client.post("/api/orders", data="not json", content_type="text/plain")
        assert resp.status_code == 400

    def test_get_update_delete(self, client):
        _create(client)
        assert client.get("/api/orders/ORD-001").status_code == 200
        resp = client.post("/api/orders/ORD-001", json={"status": "completed"})
        assert resp.status_code == 200
        assert resp.get_json()["order"]["completed_at"]
        assert client.delete("/api/orders/ORD-001").status_code == 200
        assert client.get("/api/orders/ORD-001").status_code == 404

    def test_update_invalid(self, client):
        _create(client)
        resp = client.post("/api/orders/ORD-001", json={"tax_rate": 101})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "tax_rate"

    def test_other_owner_gets_404(self, client, bob_client):
        _create(client)
        assert bob_client.get("/api/orders/ORD-001").status_code == 404
        assert bob_client.post("/api/orders/ORD-001", json={"notes": "x"}).status_code == 404
        assert bob_client.delete("/api/orders/ORD-001").status_code == 404
        assert bob_client.get("/api/orders").get_json()["total"] == 0
        assert client.get("/api/orders/ORD-001").status_code == 200

    def test_list_filters_and_pages(self, client):
        _create(client, status="pending")
        _create(client, status="shipped", customer_name="Globex")
        _create(client, status="shipped", customer_name="Initech")
        data = client.get("/api/orders?status=shipped&limit=1&sort_by=order_id&sort_order=asc").get_json()
        assert data["total"] == 2
        assert data["total_pages"] == 2
        assert [o["order_id"] for o in data["orders"]] == ["ORD-002"]
        data = client.get("/api/orders?search=initech").get_json()
        assert [o["customer_name"] for o in data["orders"]] == ["Initech"]

    def test_list_bad_sort(self, client):
        assert client.get("/api/orders?sort_by=password").status_code == 400
        assert client.get("/api/orders?page=abc").status_code == 400

    def test_activity(self, client, bob_client):
        _create(client)
        client.post("/api/orders/ORD-001", json={"notes": "hi"})
        data = client.get("/api/orders/ORD-001/activity").get_json()
        assert [a["activity_type"] for a in data["activity"]] == ["updated", "created"]
        assert bob_client.get("/api/orders/ORD-001/activity").status_code == 404
        recent = client.get("/api/activity?limit=1").get_json()
        assert len(recent["activity"]) == 1


# ═══════════════════════════════════════════════════════════════════════
# Bulk + export
# ═══════════════════════════════════════════════════════════════════════

class TestBulkAndExport:
    def test_bulk_status(self, client):
        for _ in range(3):
            _create(client)
        resp = client.post("/api/orders/bulk", json={"order_ids": ["ORD-001", "ORD-002"],
                                                     "action": "update_status", "value": "shipped"})
        assert resp.status_code == 200
        assert resp.get_json()["count"] == 2
        assert client.get("/api/orders/ORD-003").get_json()["order"]["status"] == "pending"

    def test_bulk_unknown_ids_404(self, client):
        resp = client.post("/api/orders/bulk", json={"order_ids": ["ORD-404"], "action": "delete"})
        assert resp.status_code == 404

    def test_bulk_bad_action(self, client):
        resp = client.post("/api/orders/bulk", json={"order_ids": ["ORD-001"], "action": "shred"})
        assert resp.status_code == 400

    def test_bulk_export_is_csv(self, client):
        _create(client)
        resp = client.post("/api/orders/bulk", json={"order_ids": ["ORD-001"], "action": "export"})
        assert resp.status_code == 200
        assert resp.mimetype == "text/csv"
        assert "orders_export_" in resp.headers["Content-Disposition"]

    def test_export(self, client):
        _create(client, customer_name="Acme", tags=["a", "b"])
        _create(client, customer_name="Globex", status="shipped")
        resp = client.post("/api/orders/export", json={
            "columns": ["order_id", "customer_name", "tags"],
            "filters": {"status": ["pending"]},
        })
        assert resp.status_code == 200
        assert resp.headers["Content-Disposition"].startswith("attachment; filename=orders_export_")
        rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
        assert rows == [["Order ID", "Customer Name", "Tags"], ["ORD-001", "Acme", "a; b"]]

    def test_export_selected_ids(self, client):
        _create(client)
        _create(client)
        resp = client.post("/api/orders/export", json={"order_ids": ["ORD-002"]})
        rows = list(csv.reader(io.StringIO(resp.get_data(as_text=True))))
        assert len(rows) == 2
        assert rows[1][0] == "ORD-002"

    def test_export_empty_columns(self, client):
        resp = client.post("/api/orders/export", json={"columns": []})
        assert resp.status_code == 400

    def test_export_columns_not_a_list(self, client):
        _create(client)
        resp = client.post("/api/orders/export", json={"columns": 5})
        assert resp.status_code == 400
        assert resp.get_json()["action"] == "export"
        resp = client.post("/api/orders/bulk", json={"order_ids": ["ORD-001"], "action": "export",
                                                     "columns": 5})
        assert resp.status_code == 400
        assert resp.get_json()["action"] == "export"


# ═══════════════════════════════════════════════════════════════════════
# Analytics
# ═══════════════════════════════════════════════════════════════════════

class TestAnalyticsRoutes:
    def test_analytics(self, client):
        _create(client, order_amount=200)
        data = client.get("/api/analytics?range=7d").get_json()
        assert data["ok"]
        assert data["total_orders"] == 1
        assert data["total_revenue"] == 200
        assert len(data["daily_revenue"]) == 7

    def test_bad_range(self, client):
        assert client.get("/api/analytics?range=14d").status_code == 400

    def test_summary(self, client):
        _create(client, priority="urgent")
        data = client.get("/api/analytics/summary").get_json()
        assert data["total_orders"] == 1
        assert data["urgent_orders"] == 1


# ═══════════════════════════════════════════════════════════════════════
# Customers
# ═══════════════════════════════════════════════════════════════════════

class TestCustomerRoutes:
    def test_crud(self, client):
        resp = client.post("/api/customers", json={"name": "Acme Corp", "email": "buy@acme.test"})
        assert resp.status_code == 201
        cid = resp.get_json()["customer"]["id"]
        _create(client, order_amount=75)
        data = client.get(f"/api/customers/{cid}").get_json()
        assert data["customer"]["total_orders"] == 1
        assert data["customer"]["total_spent"] == 75
        resp = client.post(f"/api/customers/{cid}", json={"phone": "555-0100"})
        assert resp.get_json()["customer"]["phone"] == "555-0100"
        assert client.delete(f"/api/customers/{cid}").status_code == 200
        assert client.get(f"/api/customers/{cid}").status_code == 404

    def test_invalid_email(self, client):
        resp = client.post("/api/customers", json={"name": "Acme", "email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.get_json()["field"] == "email"

    def test_search_and_isolation(self, client, bob_client):
        client.post("/api/customers", json={"name": "Acme Corp"})
        client.post("/api/customers", json={"name": "Globex"})
        bob_client.post("/api/customers", json={"name": "Acme Corp"})
        data = client.get("/api/customers?q=acme").get_json()
        assert data["total"] == 1
        assert bob_client.get("/api/customers").get_json()["total"] == 1

    def test_reconcile(self, client):
        client.post("/api/customers", json={"name": "Acme Corp"})
        resp = client.post("/api/customers/reconcile")
        assert resp.status_code == 200
        assert resp.get_json()["corrected"] == 0


# ═══════════════════════════════════════════════════════════════════════
# Notifications
# ═══════════════════════════════════════════════════════════════════════

class TestNotificationRoutes:
    def test_bell_flow(self, client, bob_client):
        _create(client)
        data = client.get("/api/notifications").get_json()
        assert data["unread"] == 1
        nid = data["notifications"][0]["id"]
        assert bob_client.post(f"/api/notifications/{nid}/read").status_code == 404
        assert client.post(f"/api/notifications/{nid}/read").status_code == 200
        assert client.get("/api/notifications?unread=1").get_json()["notifications"] == []
        assert client.delete(f"/api/notifications/{nid}").status_code == 200
        assert client.delete(f"/api/notifications/{nid}").status_code == 404

    def test_read_all(self, client):
        _create(client)
        _create(client)
        resp = client.post("/api/notifications/read-all")
        assert resp.get_json()["count"] == 2


# ═══════════════════════════════════════════════════════════════════════
# Rate limiting
# ═══════════════════════════════════════════════════════════════════════

class TestRateLimit:
    def test_bulk_tier_exhausted(self, client, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT", raising=False)
        codes = [client.post("/api/orders/export", json={}).status_code for _ in range(15)]
        assert codes[0] == 200
        assert 429 in codes
        events = get_audit_events("rate_limited")
        assert events
        assert "alice" in events[0]["details"]

    def test_buckets_are_per_owner(self, client, bob_client, monkeypatch):
        monkeypatch.delenv("DISABLE_RATE_LIMIT", raising=False)
        for _ in range(15):
            client.post("/api/orders/export", json={})
        assert bob_client.post("/api/orders/export", json={}).status_code == 200

    def test_disabled(self, client):
        codes = {client.post("/api/orders/export", json={}).status_code for _ in range(15)}
        assert codes == {200}
