from datetime import datetime, timedelta, timezone

import httpx
import pytest

from getnet_gateway.config import GatewayConfig
from getnet_gateway.schemas import Buyer, Payment, PaymentStatus
from getnet_gateway.services.dispatcher import CallbackDispatcher
from getnet_gateway.services.event_log import EventLog
from getnet_gateway.services.orchestrator import CallbackOrchestrator
from getnet_gateway.storage import (
    InMemoryEventStore,
    InMemoryPaymentRepository,
    InMemoryRetryLedger,
)

FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
CALLBACK_URL = "https://merchant.example.com/webhooks/getnet"


class FakeClock:
    """Deterministic clock; advance it explicitly."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class CallbackRecorder:
    """MockTransport handler that records requests and replays scripted statuses."""

    def __init__(self, *statuses, body=None):
        self.statuses = list(statuses) or [200]
        self.body = body
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, json=self.body if self.body is not None else {"ok": status < 300})


def make_payment(request_id="1001", **overrides) -> Payment:
    data = {
        "request_id": request_id,
        "reference": f"ORDER-{request_id}",
        "amount": 5000,
        "currency": "CLP",
        "status": PaymentStatus.CREATED,
        "buyer": Buyer(name="Ana", surname="Rojas", email="ana@example.com"),
        "external_url_callback": CALLBACK_URL,
        "created_at": FIXED_NOW - timedelta(hours=1),
        "updated_at": FIXED_NOW - timedelta(hours=1),
    }
    data.update(overrides)
    return Payment(**data)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return GatewayConfig(
        getnet_login="test-login",
        getnet_secret_key="test-secret",
        getnet_base_url="https://getnet.test",
        server_secret="server-secret",
        domain="https://gateway.example.com",
        storage_backend="memory",
        reconcile_delay_seconds=0,
        sweep_delay_seconds=0,
        log_json=False,
    )


@pytest.fixture
def payments(clock):
    return InMemoryPaymentRepository(clock)


@pytest.fixture
def ledger(clock):
    return InMemoryRetryLedger(clock)


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def events(event_store):
    return EventLog(event_store)


@pytest.fixture
def recorder():
    return CallbackRecorder(200)


@pytest.fixture
def callback_http(recorder):
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


@pytest.fixture
def dispatcher(callback_http, config, clock):
    return CallbackDispatcher(callback_http, server_secret=config.server_secret, clock=clock)


@pytest.fixture
def orchestrator(dispatcher, ledger, payments, events):
    return CallbackOrchestrator(dispatcher, ledger, payments, events)
