"""
Shared pytest fixtures for the Order Buddy test suite.

Every test gets its own SQLite file under tmp_path: db.DB_PATH is
redirected before the schema is created, so nothing touches data/orders.db.
"""
import os
import base64
import pytest

USERS = {"alice": "alice-pw", "bob": "bob-pw"}


# ── Temp database (per-test isolation) ────────────────────────────────────────

@pytest.fixture(autouse=True)
def temp_data_dir(tmp_path, monkeypatch):
    """Point the store at a fresh tmp database and neutralise outside services."""
    data = str(tmp_path / "data")
    os.makedirs(data, exist_ok=True)

    from order_buddy.core import db
    monkeypatch.setattr(db, "DB_PATH", os.path.join(data, "orders.db"))
    db.init_db()

    # No real email from tests; rate limiting only where a test turns it on
    for var in ("RESEND_API_KEY", "SMTP_HOST", "SMTP_USER", "SMTP_PASSWORD", "DASH_USER", "DASH_PASS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("DASH_USERS", ",".join(f"{u}:{p}" for u, p in USERS.items()))
    monkeypatch.setenv("DISABLE_RATE_LIMIT", "true")

    from order_buddy.core.security import _limiter
    _limiter.reset()
    return data


# ── Flask test client ─────────────────────────────────────────────────────────

def _basic_auth_header(user="alice", pw=None):
    pw = USERS.get(user, "") if pw is None else pw
    creds = base64.b64encode(f"{user}:{pw}".encode()).decode()
    return {"Authorization": f"Basic {creds}"}


class AuthenticatedClient:
    """Wraps Flask test client to add Basic Auth headers to every request."""
    def __init__(self, client, headers):
        self._client = client
        self._headers = headers

    def get(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.get(*args, **kwargs)

    def post(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.post(*args, **kwargs)

    def delete(self, *args, **kwargs):
        kwargs.setdefault("headers", {}).update(self._headers)
        return self._client.delete(*args, **kwargs)


@pytest.fixture
def app(temp_data_dir):
    """Create Flask app configured for testing."""
    from app import create_app
    return create_app(testing=True, run_checks=False)


@pytest.fixture
def client(app):
    """Authenticated as owner 'alice'."""
    return AuthenticatedClient(app.test_client(), _basic_auth_header("alice"))


@pytest.fixture
def bob_client(app):
    """Authenticated as a second owner, 'bob'."""
    return AuthenticatedClient(app.test_client(), _basic_auth_header("bob"))


@pytest.fixture
def anon_client(app):
    """Unauthenticated test client."""
    with app.test_client() as c:
        yield c


# ── Seed helpers ──────────────────────────────────────────────────────────────

@pytest.fixture
def make_order():
    """Create an order through the ledger (no email). Returns the stored order."""
    from order_buddy.core.ledger import create_order

    def _make(owner="alice", now=None, **fields):
        data = {"customer_name": "Acme Corp", "order_amount": 100}
        data.update(fields)
        result = create_order(owner, data, notify=False, now=now)
        assert result["ok"], result
        return result["order"]
    return _make


@pytest.fixture
def make_customer():
    from order_buddy.core.customers import create_customer

    def _make(owner="alice", **fields):
        data = {"name": "Acme Corp"}
        data.update(fields)
        result = create_customer(owner, data)
        assert result["ok"], result
        return result["customer"]
    return _make


@pytest.fixture
def sample_orders():
    """In-memory order snapshot for the pure analytics/search/export tests."""
    return [
        {"order_id": "ORD-001", "customer_name": "Acme Corp", "customer_email": "buy@acme.test",
         "order_amount": 100.0, "tax_amount": 10.0, "total_amount": 110.0, "status": "pending",
         "priority": "high", "currency": "USD", "order_date": "2025-03-10T09:00:00+00:00",
         "due_date": "2025-03-20T00:00:00+00:00", "completed_at": None,
         "notes": "rush delivery", "tags": ["wholesale", "repeat"],
         "created_at": "2025-03-10T09:00:00+00:00"},
        {"order_id": "ORD-002", "customer_name": "Globex", "customer_email": None,
         "order_amount": 250.0, "tax_amount": 0.0, "total_amount": 250.0, "status": "completed",
         "priority": "urgent", "currency": "EUR", "order_date": "2025-03-12T15:30:00+00:00",
         "due_date": None, "completed_at": "2025-03-14T15:30:00+00:00",
         "notes": None, "tags": [], "created_at": "2025-03-12T15:30:00+00:00"},
        {"order_id": "ORD-003", "customer_name": "Initech", "customer_email": "ops@initech.test",
         "order_amount": 40.0, "tax_amount": 0.0, "total_amount": None, "status": "shipped",
         "priority": "low", "currency": "USD", "order_date": "2025-02-01T12:00:00+00:00",
         "due_date": "2025-02-10T00:00:00+00:00", "completed_at": None,
         "notes": "leave at dock", "tags": ["repeat"], "created_at": "2025-02-01T12:00:00+00:00"},
    ]
