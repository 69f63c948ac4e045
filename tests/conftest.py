import hashlib
import hmac
import itertools
import json
import os
import time
import uuid
from typing import Any, Callable, Dict, Generator, Optional

import pytest
from fastapi.testclient import TestClient

# Pas de Redis en tests: rate limiting désactivé au lifespan
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from bag2go.app import app as fastapi_app
from bag2go.errors import NotifierError, PaymentGatewayError
from bag2go.fulfillment.dependencies import get_workflow
from bag2go.fulfillment.workflow import FulfillmentWorkflow
from bag2go.orders.memory import InMemoryOrderStore
from bag2go.payments.stripe_client import PaymentSession, StripeGateway
from bag2go.utils.security import require_user

WEBHOOK_SECRET = "whsec_test_secret"

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)


class FakeGateway(StripeGateway):
    """Stripe sans réseau pour les sessions; la vérification de signature reste la vraie."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.fail = False
        self._ids = itertools.count(1)

    def create_payment_session(self, order, amount, currency, success_ref, cancel_ref):
        self.calls.append({
            "order_id": order.id,
            "amount": amount,
            "currency": currency,
            "success_ref": success_ref,
            "cancel_ref": cancel_ref,
        })
        if self.fail:
            raise PaymentGatewayError("stripe indisponible")
        n = next(self._ids)
        return PaymentSession(id=f"cs_test_{n}", url=f"https://checkout.stripe.test/c/pay/cs_test_{n}")


class RecordingNotifier:
    """Enregistre les manifestes envoyés; fail_times échecs avant de réussir."""

    def __init__(self, fail_times: int = 0, delay: float = 0.0):
        self.sent = []
        self.fail_times = fail_times
        self.delay = delay
        self.attempts = 0

    def dispatch(self, order, bags):
        self.attempts += 1
        if self.delay:
            time.sleep(self.delay)
        if self.attempts <= self.fail_times:
            raise NotifierError("SendGrid a refusé le manifeste (status 503): indisponible")
        self.sent.append({"order_id": order.id, "tags": [b.tag_number for b in bags]})
        return f"msg-{len(self.sent)}"


@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()

@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()

@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()

def _build_workflow(store, gateway, notifier, max_attempts=3) -> FulfillmentWorkflow:
    return FulfillmentWorkflow(
        store,
        gateway,
        notifier,
        webhook_secret=WEBHOOK_SECRET,
        bag_price_cents=2000,
        currency="usd",
        max_bags=10,
        lease_seconds=60,
        max_attempts=max_attempts,
        abandoned_after_minutes=30,
    )

@pytest.fixture
def workflow(store, gateway, notifier) -> FulfillmentWorkflow:
    return _build_workflow(store, gateway, notifier)

@pytest.fixture
def make_workflow(store, gateway):
    """Workflow sur le même store avec un notifier instable/lent: retourne (workflow, notifier)."""
    def _make(fail_times: int = 0, delay: float = 0.0, max_attempts: int = 3):
        notifier = RecordingNotifier(fail_times=fail_times, delay=delay)
        return _build_workflow(store, gateway, notifier, max_attempts=max_attempts), notifier
    return _make

# Simuler un utilisateur authentifié et un workflow en mémoire pour les routes
@pytest.fixture(autouse=True)
def _override_dependencies(app, workflow):
    fake_user: Dict[str, Any] = {
        "id": "test-user",
        "email": "test@example.com",
        "role": "user",
        "token": "fake-token",
    }
    app.dependency_overrides[require_user] = lambda: fake_user
    app.dependency_overrides[get_workflow] = lambda: workflow
    try:
        yield
    finally:
        app.dependency_overrides.clear()

@pytest.fixture
def booking_payload() -> Callable[..., Dict[str, Any]]:
    """Payload de réservation tel qu'envoyé par le frontend (camelCase)."""
    def _make(**overrides):
        payload = {
            "firstName": "Ada",
            "lastName": "Lovelace",
            "email": "ada@example.com",
            "phone": "+1 415 555 0100",
            "pickupAddress": "1 Market St, San Francisco",
            "pickupTime": "2026-11-02T08:30:00Z",
            "airline": "aa",
            "flightNumber": "aa 123",
            "flightDate": "2026-11-02",
            "bags": 2,
            "hazItems": False,
            "declarations": "",
        }
        payload.update(overrides)
        return payload
    return _make

@pytest.fixture
def checkout_event() -> Callable[..., Dict[str, Any]]:
    def _make(order_id: Optional[str], event_type: str = "checkout.session.completed", payment_status: str = "paid", event_id: Optional[str] = None):
        metadata = {"order_id": order_id} if order_id else {}
        return {
            "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
            "object": "event",
            "type": event_type,
            "data": {"object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "payment_status": payment_status,
                "metadata": metadata,
            }},
        }
    return _make

@pytest.fixture
def sign_event() -> Callable[..., tuple]:
    """Signe un événement comme Stripe: v1 = HMAC-SHA256(secret, f"{t}.{payload}")."""
    def _sign(event: Dict[str, Any], secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None):
        payload = json.dumps(event)
        t = int(time.time()) if timestamp is None else timestamp
        signature = hmac.new(secret.encode("utf-8"), f"{t}.{payload}".encode("utf-8"), hashlib.sha256).hexdigest()
        return payload.encode("utf-8"), f"t={t},v1={signature}"
    return _sign
