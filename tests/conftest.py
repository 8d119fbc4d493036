# tests/conftest.py
"""
Test configuration and shared fixtures.

Provides the Flask app, test client, an authenticated request helper and an
in-memory subscription store so reconciler tests run without a database.
"""

import os
import sys
from datetime import datetime, timezone
import pytest
from unittest.mock import Mock, MagicMock, patch

# Add the project root to sys.path
PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from folio.services.plans import PlanCatalog  # noqa: E402
from folio.services.subscription_store import (  # noqa: E402
    ProfileWriter,
    SubscriptionStatus,
    SubscriptionStore,
)
from folio.services.subscriptions import SubscriptionReconciler  # noqa: E402
from folio.utils.errors import ConflictError, TransientStoreError  # noqa: E402

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
CREATOR_ID = "creator-1"


class InMemorySubscriptionStore(SubscriptionStore):
    """Dict-backed store with the same key semantics as the subscriptions table."""

    def __init__(self):
        self.records = {}
        self.inserts = 0
        self.updates = 0

    def find_by_key(self, key):
        return self.records.get(key)

    def find_by_subscription_id(self, subscription_id):
        matches = [r for r in self.records.values() if r.subscription_id == subscription_id]
        return matches[-1] if matches else None

    def list_active_for_creator(self, creator_id):
        active = [
            r for r in self.records.values()
            if r.creator_id == creator_id and r.status is SubscriptionStatus.ACTIVE
        ]
        # Newest first; insertion order breaks ties
        return sorted(reversed(active), key=lambda r: r.updated_at or NOW, reverse=True)

    def insert(self, record):
        if record.idempotency_key in self.records:
            raise ConflictError(record.idempotency_key)
        self.records[record.idempotency_key] = record
        self.inserts += 1

    def update(self, record):
        key = record.idempotency_key
        if key is None:
            existing = self.find_by_subscription_id(record.subscription_id)
            key = existing.idempotency_key if existing else None
        if key not in self.records:
            raise TransientStoreError(f"No subscription matched update ({key})")
        self.records[key] = record
        self.updates += 1
        return record

    def count_active(self):
        return sum(1 for r in self.records.values() if r.status is SubscriptionStatus.ACTIVE)


class RecordingProfileWriter(ProfileWriter):
    """Keeps the last entitlement written per creator."""

    def __init__(self):
        self.profiles = {}
        self.writes = []

    def write_entitlement(self, creator_id, entitlement):
        self.profiles[creator_id] = entitlement
        self.writes.append((creator_id, entitlement))


@pytest.fixture
def app():
    """Create and configure a Flask app instance for testing."""
    # Set test environment variables before importing app
    os.environ["FLASK_SECRET_KEY"] = "test-secret-key-for-testing-only"
    os.environ["APP_CONFIG"] = "folio.config.TestConfig"

    from folio import create_app

    app = create_app()
    app.config.update({
        "TESTING": True,
        "WTF_CSRF_ENABLED": False,  # Disable CSRF for tests
        "RATELIMIT_ENABLED": False,  # Disable rate limiting for tests
    })

    yield app


@pytest.fixture
def client(app):
    """Create a test client for the Flask app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create a test CLI runner for the Flask app."""
    return app.test_cli_runner()


@pytest.fixture
def auth_headers():
    """Return headers for an authenticated request."""
    return {"Authorization": "Bearer test-token"}


@pytest.fixture
def logged_in():
    """Any bearer token resolves to CREATOR_ID."""
    with patch("folio.services.supabase_client.get_user_from_token") as mock_user:
        mock_user.return_value = {"id": CREATOR_ID, "email": "creator@example.com"}
        yield mock_user


@pytest.fixture
def logged_in_admin(logged_in):
    with patch("folio.services.supabase_client.is_admin", return_value=True) as mock_admin:
        yield mock_admin


@pytest.fixture
def mock_supabase():
    """Mock Supabase client for testing without real database."""
    mock_client = MagicMock()

    # Mock common Supabase operations
    mock_client.auth.get_user.return_value = Mock(
        user=Mock(id="test-user-id", email="test@example.com")
    )
    mock_client.table.return_value.select.return_value.execute.return_value = Mock(
        data=[]
    )

    return mock_client


@pytest.fixture
def catalog():
    """Plan catalog with no database: always the built-in defaults."""
    return PlanCatalog(lambda: None)


@pytest.fixture
def store():
    return InMemorySubscriptionStore()


@pytest.fixture
def profiles():
    return RecordingProfileWriter()


@pytest.fixture
def reconciler(store, profiles, catalog):
    return SubscriptionReconciler(store, profiles, catalog, clock=lambda: NOW)


@pytest.fixture
def routed_reconciler(reconciler):
    """Routes use the in-memory reconciler."""
    with patch("folio.routes.billing.get_reconciler", return_value=reconciler), \
            patch("folio.routes.api.get_reconciler", return_value=reconciler), \
            patch("folio.routes.admin.get_reconciler", return_value=reconciler):
        yield reconciler


def checkout_event(session_id="cs_1", creator_id=CREATOR_ID, plan_type="premium",
                   created=1_700_000_000, subscription_id="sub_1", event_id="evt_checkout",
                   featured_posts=None):
    """Decoded checkout.session.completed payload."""
    metadata = {"creatorId": creator_id, "planType": plan_type}
    if featured_posts is not None:
        metadata["featured_posts"] = str(featured_posts)
    return {
        "id": event_id,
        "type": "checkout.session.completed",
        "created": created,
        "data": {"object": {
            "id": session_id,
            "customer": "cus_1",
            "subscription": subscription_id,
            "payment_intent": None,
            "status": "complete",
            "metadata": metadata,
        }},
    }


def subscription_event(event_type="customer.subscription.updated", status="active",
                       created=1_700_000_100, subscription_id="sub_1", event_id="evt_sub",
                       period_end=1_702_592_000):
    return {
        "id": event_id,
        "type": event_type,
        "created": created,
        "data": {"object": {
            "id": subscription_id,
            "customer": "cus_1",
            "status": status,
            "current_period_end": period_end,
            "cancel_at_period_end": False,
            "metadata": {},
        }},
    }


def invoice_event(event_type="invoice.payment_failed", created=1_700_000_200,
                  subscription_id="sub_1", event_id="evt_inv"):
    return {
        "id": event_id,
        "type": event_type,
        "created": created,
        "data": {"object": {
            "id": "in_1",
            "customer": "cus_1",
            "subscription": subscription_id,
            "amount_paid": 599,
            "currency": "usd",
            "attempt_count": 1,
            "status": "open",
        }},
    }
