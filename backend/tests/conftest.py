"""
Shared fixtures: isolated settings, both storage backends, a controllable
clock, a fake webhook receiver and an API client with provider overrides.
"""
import os

# Must be set before offramp.config builds its cached settings
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENVIRONMENT", "sandbox")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("WEBHOOK_SWEEP_ENABLED", "false")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")

from contextlib import contextmanager
from datetime import datetime, timedelta

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from offramp.config import Settings
from offramp.database import Base, init_db
from offramp.services.kyc_gateway import SandboxKycGateway
from offramp.services.kyc_service import KycService
from offramp.services.partner_service import PartnerService
from offramp.services.quote_service import QuoteService
from offramp.services.rate_provider import FixedRateProvider
from offramp.services.transaction_service import TransactionService, SimulatedPayoutRail
from offramp.services.webhook_dispatcher import WebhookDispatcher
from offramp.storage import MemoryStorage, SqlStorage
from offramp.utils.rate_limiter import reset_rate_limits

TEST_RATE = "83.65"
PARTNER_WEBHOOK_URL = "https://partner.example/hooks/offramp"


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class WebhookReceiver:
    """httpx MockTransport handler that records deliveries and answers from a script."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: list = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self.responses.pop(0) if self.responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, json={"received": True})

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self))


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENVIRONMENT="sandbox",
        DATABASE_URL="sqlite://",
        WEBHOOK_SWEEP_ENABLED=False,
        ADMIN_API_KEY="test-admin-key",
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 10, 0, 0))


@pytest.fixture(params=["memory", "sql"])
def storage(request):
    if request.param == "memory":
        store = MemoryStorage()
        yield store
        return

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    store = SqlStorage(session_factory())
    yield store
    store.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def receiver():
    return WebhookReceiver()


@pytest.fixture
def partners(storage, settings, clock):
    return PartnerService(storage, settings, clock)


@pytest.fixture
def partner(partners):
    return partners.create_partner("Acme Pay", "ops@acme.example", PARTNER_WEBHOOK_URL)


@pytest.fixture
def session(partners, partner):
    return partners.create_session(partner, metadata={"userRef": "u-42"})


@pytest.fixture
def quotes(storage, settings, clock):
    return QuoteService(storage, FixedRateProvider(TEST_RATE), settings, clock)


@pytest.fixture
def kycs(storage, settings, clock):
    return KycService(storage, SandboxKycGateway(), settings, clock)


@pytest.fixture
def dispatcher(storage, settings, clock, receiver):
    return WebhookDispatcher(storage, settings, clock, client=receiver.client())


@pytest.fixture
def transactions(storage, dispatcher, settings, clock):
    return TransactionService(storage, dispatcher, SimulatedPayoutRail(), settings, clock)


@pytest.fixture
def completed_kyc(kycs, session, partner):
    """A KYC session that has passed Aadhaar and PAN."""
    kyc = kycs.create_kyc_session(session, partner, "user-1", "pan", "ABCPK1234F", "Rahul Kumar")
    kycs.generate_aadhaar_otp(kyc.id, "234567890123", partner)
    kycs.verify_aadhaar(kyc.id, "234567890123", "123456", partner)
    outcome = kycs.verify_pan(kyc.id, "ABCPK1234F", "Rahul Kumar", partner)
    assert outcome.kyc.status == "completed"
    return outcome.kyc


# ─── API ─────────────────────────────────────────────────────────────

@pytest.fixture
def app_client(receiver):
    """TestClient against an in-memory store with sandbox providers."""
    from fastapi.testclient import TestClient

    from offramp import dependencies
    from offramp.main import app
    from offramp.storage import get_storage

    store = MemoryStorage()

    @contextmanager
    def storage_factory():
        yield store

    webhook_client = receiver.client()
    app.dependency_overrides[get_storage] = lambda: store
    app.dependency_overrides[dependencies.get_storage_factory] = lambda: storage_factory
    app.dependency_overrides[dependencies.get_webhook_client] = lambda: webhook_client
    app.dependency_overrides[dependencies.get_rate_provider] = lambda: FixedRateProvider(TEST_RATE)
    app.dependency_overrides[dependencies.get_kyc_gateway] = lambda: SandboxKycGateway()
    app.dependency_overrides[dependencies.get_payout_rail] = lambda: SimulatedPayoutRail()
    reset_rate_limits()

    client = TestClient(app)
    client.store = store
    yield client

    app.dependency_overrides.clear()
    webhook_client.close()
