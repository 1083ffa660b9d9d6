# tests/conftest.py

import json
import os
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from fastapi.testclient import TestClient

from app.providers.mock import MockProvider
from app.transactions.amount_policy import AmountPolicy
from app.transactions.events import TransitionEmitter
from app.transactions.memory import InMemoryTransactionStore
from deps import services as deps
from main import create_app
from services import metrics

SCRIPT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "scripts"))
if SCRIPT_DIR not in sys.path:
    sys.path.insert(0, SCRIPT_DIR)

from _webhook_signing import canonical_json_bytes, cashfree_event, signature_header  # noqa: E402


WEBHOOK_SECRET = "test-webhook-secret"


class FakeClock:
    """Deterministic clock for the in-memory store; every read advances 1ms."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(milliseconds=1)
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(clock: FakeClock) -> InMemoryTransactionStore:
    return InMemoryTransactionStore(clock=clock)


@pytest.fixture()
def emitter() -> TransitionEmitter:
    return TransitionEmitter()


@pytest.fixture()
def transitions(emitter: TransitionEmitter) -> list:
    events: list = []
    emitter.subscribe(events.append)
    return events


@pytest.fixture()
def policy() -> AmountPolicy:
    return AmountPolicy(lower_bound=10, upper_bound=101)


@pytest.fixture()
def mock_provider() -> MockProvider:
    return MockProvider()


@pytest.fixture()
def webhook_secret(monkeypatch) -> str:
    monkeypatch.setenv("CASHFREE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    monkeypatch.setenv("MOCK_WEBHOOK_SECRET", WEBHOOK_SECRET)
    return WEBHOOK_SECRET


@pytest.fixture()
def app(store, emitter, policy, mock_provider, webhook_secret):
    application = create_app()
    application.dependency_overrides[deps.get_store] = lambda: store
    application.dependency_overrides[deps.get_emitter] = lambda: emitter
    application.dependency_overrides[deps.get_amount_policy] = lambda: policy
    application.dependency_overrides[deps.get_payment_provider] = lambda: mock_provider
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def client(app) -> TestClient:
    # Needed so tests can assert 500s instead of pytest re-raising server exceptions
    return TestClient(app, raise_server_exceptions=False)


def signed_webhook(
    client: TestClient,
    payload: Any,
    *,
    secret: str = WEBHOOK_SECRET,
    path: str = "/cashfree-webhook",
    signature: Optional[str] = None,
):
    body = payload if isinstance(payload, bytes) else canonical_json_bytes(payload)
    headers = {"Content-Type": "application/json"}
    if signature is None:
        headers.update(signature_header(secret, body))
    else:
        headers["X-Signature"] = signature
    return client.post(path, content=body, headers=headers)


def success_event(order_id: str, amount: Optional[int] = None, event_type: str = "PAYMENT_SUCCESS_WEBHOOK") -> dict:
    return cashfree_event(order_id, event_type=event_type, amount=amount)


def raw(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")
