"""Shared pytest fixtures: in-memory database, fake billing backend, API client."""

import json
import os
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

# Must be set before agaspay.config is imported
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["LOG_FORMAT"] = "text"

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine, AsyncSession
from sqlalchemy.pool import StaticPool

from agaspay.api import deps
from agaspay.config import settings
from agaspay.core.events import EventBus
from agaspay.database import Base
from agaspay.main import app
from agaspay.models import payment  # noqa: F401
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.reconciliation_service import ReconciliationService
from agaspay.utils.time import get_portal_today

BACKEND_URL = "http://billing.test/api/v1"


def raw_bill(
    bill_id: str,
    connection_id: str = "conn-1",
    total: Any = "450.00",
    due: Optional[date] = None,
    status: str = "unpaid",
    **extra: Any,
) -> Dict[str, Any]:
    """A bill record the way the billing backend ships it."""
    record = {
        "_id": bill_id,
        "connection_id": connection_id,
        "total_amount": total,
        "status": status,
        "due_date": (due or get_portal_today()).isoformat(),
        "previous_reading": 100,
        "present_reading": 118,
    }
    record.update(extra)
    return record


class FakeBillingBackend:
    """
    In-memory stand-in for the billing backend, served through
    httpx.MockTransport.

    ``settle_on_success`` mimics the backend's own webhook: when a checkout
    is reported successful, the bill's amount_paid is already updated.
    """

    def __init__(self) -> None:
        self.bills: List[Dict[str, Any]] = []
        self.connection_states: Dict[str, str] = {}
        self.payment_states: Dict[str, str] = {}
        self.initiated: List[Dict[str, Any]] = []
        self.requests: List[str] = []
        self.fail_initiation = False
        self.fail_status_lookup = False
        self.direct_settlement = False
        self.settle_on_success = False

    def add_bill(self, **kwargs: Any) -> Dict[str, Any]:
        record = raw_bill(**kwargs)
        self.bills.append(record)
        return record

    def set_state(self, connection_id: str, state: str) -> None:
        self.connection_states[connection_id] = state

    def resolve(self, reference: str, state: str) -> None:
        self.payment_states[reference] = state
        if state == "succeeded" and self.settle_on_success:
            initiated = next(p for p in self.initiated if p["reference"] == reference)
            bill = next(b for b in self.bills if b["_id"] == initiated["bill_id"])
            paid = float(bill.get("amount_paid") or 0) + initiated["amount"]
            bill["amount_paid"] = paid
            bill["status"] = "paid" if paid >= float(bill["total_amount"]) else "partial"

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/api/v1", "", 1)
        self.requests.append(f"{request.method} {path}")

        if request.method == "GET" and path == "/bills":
            connection_id = request.url.params.get("connection_id")
            bills = [b for b in self.bills if connection_id is None or b["connection_id"] == connection_id]
            return httpx.Response(200, json={"bills": bills})

        if request.method == "GET" and path.startswith("/connections/") and path.endswith("/state"):
            connection_id = path.split("/")[2]
            state = self.connection_states.get(connection_id, "active")
            return httpx.Response(200, json={"data": {"connection_status": state}})

        if request.method == "POST" and path == "/payments":
            if self.fail_initiation:
                return httpx.Response(500, json={"message": "provider down"})
            body = json.loads(request.content)
            reference = f"cs_test_{len(self.initiated) + 1}"
            self.initiated.append({**body, "reference": reference})
            if self.direct_settlement:
                return httpx.Response(200, json={"data": {"paymentId": reference}})
            return httpx.Response(200, json={
                "data": {"checkoutUrl": f"https://checkout.test/{reference}", "externalReference": reference}
            })

        if request.method == "GET" and path.startswith("/payments/status/"):
            if self.fail_status_lookup:
                return httpx.Response(503, json={"message": "unavailable"})
            reference = path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"data": {"status": self.payment_states.get(reference, "pending")}})

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def today() -> date:
    return get_portal_today()


@pytest.fixture
def days(today: date):
    """Date relative to today: days(-2) is two days ago."""
    return lambda offset: today + timedelta(days=offset)


@pytest.fixture
def backend() -> FakeBillingBackend:
    return FakeBillingBackend()


@pytest.fixture
async def billing_api(backend: FakeBillingBackend):
    transport = httpx.MockTransport(lambda request: backend.handler(request))
    client = httpx.AsyncClient(transport=transport, base_url=BACKEND_URL)
    api = BillingApiClient(client=client)
    yield api
    await api.aclose()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def reconciler(billing_api: BillingApiClient, events: EventBus) -> ReconciliationService:
    return ReconciliationService(billing_api, events)


@pytest.fixture
def api_base() -> str:
    return f"http://test{settings.API_V1_PREFIX}"


@pytest.fixture
async def async_client(session_factory, billing_api: BillingApiClient, events: EventBus):
    """ASGI client with the database, billing backend and event bus swapped for test doubles."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_billing_api] = lambda: billing_api
    app.dependency_overrides[deps.get_event_bus] = lambda: events

    client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test", timeout=30.0)
    yield client
    await client.aclose()
    app.dependency_overrides.clear()
