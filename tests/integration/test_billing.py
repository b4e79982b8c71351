"""Integration tests: Billing summary endpoint."""

from decimal import Decimal

import pytest
from httpx import AsyncClient

from agaspay.core.events import PaymentResolved


def statuses(body):
    return {view["bill_id"]: view["status"] for view in body["data"]["bills"]}


@pytest.mark.asyncio
async def test_billing_summary(async_client: AsyncClient, api_base: str, backend, days):
    backend.add_bill(bill_id="b1", total="450.00", due=days(-2))
    backend.add_bill(bill_id="b2", total="200.00", due=days(10))
    backend.add_bill(bill_id="b3", total="380.00", due=days(-40), amount_paid="380.00", status="paid")
    backend.add_bill(bill_id="bad", total=-1)

    resp = await async_client.get(f"{api_base}/billing/connections/conn-1")

    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    summary = body["data"]["summary"]
    assert Decimal(summary["total_due"]) == Decimal("650.00")
    assert summary["unpaid_count"] == 2
    assert summary["earliest_bill_id"] == "b1"
    assert summary["earliest_overdue_days"] == -2
    assert statuses(body) == {"b1": "overdue", "b2": "overdue", "b3": "paid", "bad": "unknown"}

    views = {view["bill_id"]: view for view in body["data"]["bills"]}
    assert views["b1"]["payable"] is True
    assert views["b3"]["payable"] is False
    assert Decimal(views["b1"]["bill"]["balance"]) == Decimal("450.00")
    assert views["bad"]["error"]


@pytest.mark.asyncio
async def test_single_bill_due_soon(async_client: AsyncClient, api_base: str, backend, days):
    backend.add_bill(bill_id="b1", total="500.00", due=days(2))

    resp = await async_client.get(f"{api_base}/billing/connections/conn-1")

    summary = resp.json()["data"]["summary"]
    assert Decimal(summary["total_due"]) == Decimal("500.00")
    assert statuses(resp.json()) == {"b1": "due_soon"}


@pytest.mark.asyncio
async def test_disconnected_connection(async_client: AsyncClient, api_base: str, backend, days):
    backend.add_bill(bill_id="b1", due=days(-60))
    backend.set_state("conn-1", "disconnected")

    resp = await async_client.get(f"{api_base}/billing/connections/conn-1")

    body = resp.json()
    assert body["data"]["connection_state"] == "disconnected"
    assert statuses(body) == {"b1": "disconnected"}
    assert body["data"]["bills"][0]["payable"] is False


@pytest.mark.asyncio
async def test_unknown_connection_state_is_upstream_error(async_client: AsyncClient, api_base: str, backend):
    backend.add_bill(bill_id="b1")
    backend.set_state("conn-1", "archived")

    resp = await async_client.get(f"{api_base}/billing/connections/conn-1")

    assert resp.status_code == 502
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "UPSTREAM_ERROR"
    assert body["error"]["message"] == "Unknown connection state 'archived' for connection conn-1"


@pytest.mark.asyncio
async def test_summary_cache_is_dropped_on_payment(async_client: AsyncClient, api_base: str, backend, events, days):
    bill = backend.add_bill(bill_id="b1", total="450.00", due=days(2))

    first = await async_client.get(f"{api_base}/billing/connections/conn-1")
    bill["amount_paid"] = "450.00"
    bill["status"] = "paid"
    cached = await async_client.get(f"{api_base}/billing/connections/conn-1")
    assert statuses(cached.json()) == statuses(first.json()) == {"b1": "due_soon"}

    await events.publish(PaymentResolved(
        bill_id="b1",
        connection_id="conn-1",
        new_balance=Decimal("0.00"),
        amount_applied=Decimal("450.00"),
        external_reference="cs_test_1",
    ))
    fresh = await async_client.get(f"{api_base}/billing/connections/conn-1")
    assert statuses(fresh.json()) == {"b1": "paid"}
