"""Unit tests for the billing backend client."""

from decimal import Decimal

import httpx
import pytest

from agaspay.core.exceptions import GatewayError, UpstreamError
from agaspay.models.enums import ConnectionState, GatewayState
from agaspay.services.billing_api import BillingApiClient


def client_for(handler):
    return BillingApiClient(client=httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="http://billing.test/api/v1",
    ))


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    [{"_id": "b1"}],
    {"bills": [{"_id": "b1"}]},
    {"billingDetails": [{"_id": "b1"}]},
    {"data": [{"_id": "b1"}]},
])
async def test_get_bills_accepts_envelopes(payload):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=payload)

    async with client_for(handler) as api:
        assert await api.get_bills("conn-1") == [{"_id": "b1"}]
    assert seen[0].url.params["connection_id"] == "conn-1"


@pytest.mark.asyncio
async def test_get_bills_upstream_failure():
    async with client_for(lambda request: httpx.Response(500)) as api:
        with pytest.raises(UpstreamError):
            await api.get_bills("conn-1")


@pytest.mark.asyncio
async def test_get_connection_state():
    handler = lambda request: httpx.Response(200, json={"state": "For_Reconnection"})
    async with client_for(handler) as api:
        assert await api.get_connection_state("conn-1") == ConnectionState.FOR_RECONNECTION


@pytest.mark.asyncio
async def test_create_payment_sends_amount_once():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"checkout_url": "https://pay.test/x", "payment_reference": "ref-9"})

    async with client_for(handler) as api:
        initiation = await api.create_payment("b1", "gcash", Decimal("125.50"))

    assert len(calls) == 1
    assert initiation.checkout_url == "https://pay.test/x"
    assert initiation.external_reference == "ref-9"


@pytest.mark.asyncio
async def test_create_payment_rejected():
    async with client_for(lambda request: httpx.Response(400, text="amount too low")) as api:
        with pytest.raises(GatewayError) as exc_info:
            await api.create_payment("b1", "gcash", Decimal("1"))
    assert "400" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.parametrize("raw, expected", [
    ("succeeded", GatewayState.SUCCESS),
    ("PAID", GatewayState.SUCCESS),
    ("canceled", GatewayState.FAILURE),
    ("expired", GatewayState.FAILURE),
    ("awaiting_payment_method", GatewayState.PENDING),
])
async def test_payment_status_aliases(raw, expected):
    async with client_for(lambda request: httpx.Response(200, json={"status": raw})) as api:
        assert await api.get_payment_status("ref-1") == expected


@pytest.mark.asyncio
async def test_unknown_payment_status():
    async with client_for(lambda request: httpx.Response(200, json={"status": "on_hold"})) as api:
        with pytest.raises(GatewayError):
            await api.get_payment_status("ref-1")
