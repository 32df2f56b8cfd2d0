"""
Pytest global configuration for SubSync.

This conftest provides:
- An isolated in-memory SQLite database swapped into subsync.database.session per test
- FakeGateway: a PayPal-shaped adapter that records remote calls instead of calling PayPal
- RecordingNotifier: captures provisioning notifications
- Factories for subscriptions and PayPal webhook envelopes
"""

import os

# Must be set before subsync is imported (settings and the engine are built at import)
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTH_DEV_MODE"] = "true"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["ADMIN_API_TOKEN"] = "test-admin-token"

from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import subsync.database.session as db_session_module
from subsync.database.session import Base, get_session, make_engine
import subsync.database.models  # noqa: F401 - registers all models on Base.metadata
from subsync.api.main import app
from subsync.core.config import GatewayConfig, get_settings
from subsync.core.locks import KeyedLock
from subsync.core.services.provisioning import ProvisioningNotifier, set_notifier
from subsync.core.services.retry_policy import RetryPolicy
from subsync.core.services.status_listener import StatusListener, set_status_listener
from subsync.core.services.subscription_service import SubscriptionService
from subsync.database.models.subscription import Subscription
from subsync.payments import GatewayRegistry, ManualGateway, set_gateway_registry
from subsync.payments.base import GatewayAdapter, GatewayError, RemoteStatus, RemoteSubscription
from subsync.payments.paypal_provider import translate_paypal_event
from subsync.utils.dates import utcnow
from subsync.utils.enums import RemoteState, SubscriptionStatus


# ============================================================================
# TEST DOUBLES
# ============================================================================

class FakeGateway(GatewayAdapter):
    """PayPal-shaped gateway: parses PayPal envelopes, records every remote call."""

    def __init__(self, name: str = "paypal", enabled: bool = True):
        super().__init__(GatewayConfig(name=name, enabled=enabled))
        self.name = name
        self.calls: List[Tuple[str, str]] = []
        self.remote_states: Dict[str, str] = {}
        self.next_billing_time = None
        self.failing: set = set()
        self.accept_signature = True
        self.last_create: Dict[str, Any] = {}
        self._created = 0

    def get_name(self) -> str:
        return self.name

    def _record(self, operation: str, remote_id: str):
        self.calls.append((operation, remote_id))
        if operation in self.failing:
            return GatewayError(f"{operation} failed", status_code=503, retryable=True)
        return True

    def calls_for(self, operation: str) -> List[str]:
        return [remote_id for op, remote_id in self.calls if op == operation]

    def create_remote_subscription(self, plan, customer, success_url, cancel_url, reference=None, amount=None):
        if "create" in self.failing:
            return GatewayError("create failed", status_code=500)
        self._created += 1
        remote_id = f"I-FAKE{self._created:04d}"
        self.remote_states.setdefault(remote_id, RemoteState.APPROVAL_PENDING)
        self.calls.append(("create", remote_id))
        self.last_create = {
            "plan": plan,
            "customer": customer,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "reference": reference,
            "amount": amount,
        }
        return RemoteSubscription(remote_id=remote_id, approval_url=f"https://provider.test/approve/{remote_id}")

    def cancel_remote(self, remote_id):
        return self._record("cancel", remote_id)

    def suspend_remote(self, remote_id):
        return self._record("suspend", remote_id)

    def reactivate_remote(self, remote_id):
        return self._record("reactivate", remote_id)

    def schedule_cancel_remote(self, remote_id):
        return self._record("schedule_cancel", remote_id)

    def resume_remote(self, remote_id):
        return self._record("resume", remote_id)

    def fetch_remote_status(self, remote_id):
        self.calls.append(("fetch", remote_id))
        if "fetch" in self.failing:
            return GatewayError("fetch failed", status_code=503, retryable=True)
        return RemoteStatus(
            remote_id=remote_id,
            state=self.remote_states.get(remote_id, RemoteState.ACTIVE),
            next_billing_time=self.next_billing_time,
        )

    def parse_event(self, payload):
        return translate_paypal_event(payload)

    def verify_webhook(self, raw_body, headers, payload):
        return self.accept_signature


class RecordingNotifier(ProvisioningNotifier):
    def __init__(self):
        self.events: List[Tuple[str, int]] = []
        self.accept = True

    def get_name(self) -> str:
        return "recording"

    def notify(self, action: str, subscription: Dict[str, Any]) -> bool:
        self.events.append((action, subscription["id"]))
        return self.accept

    def actions_for(self, subscription_id: int) -> List[str]:
        return [action for action, sid in self.events if sid == subscription_id]


class RecordingStatusListener(StatusListener):
    def __init__(self):
        self.changes: List[Tuple[int, Optional[str], str]] = []

    def get_name(self) -> str:
        return "recording"

    def status_changed(self, old_status, new_status, subscription):
        self.changes.append((subscription["id"], old_status, new_status))

    def changes_for(self, subscription_id: int) -> List[Tuple[Optional[str], str]]:
        return [(old, new) for sid, old, new in self.changes if sid == subscription_id]


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def test_db_engine():
    """
    Fresh in-memory database; replaces the global engine used by get_session().
    """
    engine = make_engine("sqlite://")
    Base.metadata.create_all(bind=engine)

    db_session_module.engine = engine
    db_session_module.SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
        expire_on_commit=False,
    )

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def settings(monkeypatch):
    """Process settings; tests patch attributes through monkeypatch."""
    current = get_settings()
    monkeypatch.setattr(current, "auth_dev_mode", True)
    monkeypatch.setattr(current, "admin_api_token", "test-admin-token")
    return current


# ============================================================================
# GATEWAYS / SERVICES
# ============================================================================

@pytest.fixture
def gateway():
    return FakeGateway("paypal")


@pytest.fixture
def registry(gateway):
    registry = GatewayRegistry([gateway, ManualGateway(GatewayConfig(name="manual", enabled=True))])
    set_gateway_registry(registry)
    yield registry
    set_gateway_registry(None)


@pytest.fixture
def notifier():
    recorder = RecordingNotifier()
    set_notifier(recorder)
    yield recorder
    set_notifier(None)


@pytest.fixture
def status_listener():
    recorder = RecordingStatusListener()
    set_status_listener(recorder)
    yield recorder
    set_status_listener(None)


@pytest.fixture
def policy():
    return RetryPolicy(retry_window=timedelta(days=3), grace_period=timedelta(days=7), retry_threshold=3)


@pytest.fixture
def service(test_db_engine, registry, notifier, status_listener, policy):
    return SubscriptionService(registry, notifier, policy, locks=KeyedLock(), status_listener=status_listener)


# ============================================================================
# FASTAPI CLIENT
# ============================================================================

@pytest.fixture(scope="function")
def test_client(test_db_engine, registry, notifier, status_listener, settings):
    """
    TestClient bound to the test database, fake gateways and recording notifier and listener.

    The lifespan is not entered, so the scheduler never starts.
    """
    return TestClient(app)


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer test-admin-token"}


# ============================================================================
# DATA FACTORIES
# ============================================================================

@pytest.fixture
def make_subscription(test_db_engine):
    """Insert a subscription row directly; returns its id."""

    def _make(**overrides) -> int:
        now = utcnow()
        values = dict(
            user_id=1,
            plan_id="basic-monthly",
            payment_method="paypal",
            payment_id=f"I-{uuid4().hex[:12].upper()}",
            status=SubscriptionStatus.ACTIVE,
            start_date=now - timedelta(days=5),
            end_date=now + timedelta(days=25),
            last_payment_date=now - timedelta(days=5),
            amount=Decimal("10.00"),
            tax_amount=Decimal("0.00"),
            total_amount=Decimal("10.00"),
            currency="USD",
            billing_frequency="monthly",
            customer_data={"email": "customer@example.com"},
        )
        values.update(overrides)
        with get_session() as db:
            subscription = Subscription(**values)
            db.add(subscription)
            db.flush()
            return subscription.id

    return _make


@pytest.fixture
def load_subscription(test_db_engine):
    def _load(subscription_id: int) -> Optional[Subscription]:
        with get_session() as db:
            return db.get(Subscription, subscription_id)

    return _load


@pytest.fixture
def paypal_event():
    """Build a PayPal webhook envelope."""

    def _event(event_type: str, resource: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": event_id or f"WH-{uuid4().hex[:16].upper()}",
            "event_type": event_type,
            "resource_type": "subscription" if event_type.startswith("BILLING.") else "sale",
            "resource": resource,
        }

    return _event


@pytest.fixture
def plan_payload():
    return {
        "id": "basic-monthly",
        "name": "Basic",
        "price": "10.00",
        "currency": "USD",
        "billing_frequency": "monthly",
    }
