"""Client for the billing backend and its payment gateway endpoints"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from agaspay.config import settings
from agaspay.core.exceptions import GatewayError, UpstreamError
from agaspay.core.logging import get_logger
from agaspay.models.enums import ConnectionState, GatewayState
from agaspay.schemas.payment import PaymentInitiation

logger = get_logger(__name__)

# Provider vocabulary -> our three checkout states
GATEWAY_STATE_ALIASES = {
    "success": GatewayState.SUCCESS,
    "succeeded": GatewayState.SUCCESS,
    "paid": GatewayState.SUCCESS,
    "completed": GatewayState.SUCCESS,
    "confirmed": GatewayState.SUCCESS,
    "failure": GatewayState.FAILURE,
    "failed": GatewayState.FAILURE,
    "cancelled": GatewayState.FAILURE,
    "canceled": GatewayState.FAILURE,
    "expired": GatewayState.FAILURE,
    "pending": GatewayState.PENDING,
    "processing": GatewayState.PENDING,
    "awaiting_payment_method": GatewayState.PENDING,
    "awaiting_next_action": GatewayState.PENDING,
}


def _unwrap(payload: Any, *keys: str) -> Any:
    if isinstance(payload, dict):
        for key in keys:
            if key in payload:
                return payload[key]
    return payload


class BillingApiClient:
    """
    Async wrapper around the billing backend.

    Fetch failures raise UpstreamError; failures of the payment calls raise
    GatewayError. Nothing here retries: payment initiation in particular must
    only ever happen once per user action.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        if client is None:
            headers = {"Accept": "application/json"}
            token = token if token is not None else settings.BILLING_API_TOKEN
            if token:
                headers["Authorization"] = f"Bearer {token}"
            client = httpx.AsyncClient(
                base_url=base_url or settings.BILLING_API_URL,
                headers=headers,
                timeout=timeout or settings.BILLING_API_TIMEOUT,
            )
        self._client = client

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BillingApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as exc:
            logger.error("Billing backend request failed: GET %s: %s", path, exc)
            raise UpstreamError(f"Billing backend request failed: GET {path}")
        except ValueError:
            raise UpstreamError(f"Billing backend returned invalid JSON for GET {path}")

    async def get_bills(self, connection_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw bill records, optionally filtered to one connection."""
        params = {"connection_id": connection_id} if connection_id else None
        payload = await self._get_json("/bills", params=params)
        bills = _unwrap(payload, "bills", "billingDetails", "data")
        if not isinstance(bills, list):
            raise UpstreamError("Billing backend returned no bill list")
        return bills

    async def get_connection_state(self, connection_id: str) -> ConnectionState:
        payload = await self._get_json(f"/connections/{connection_id}/state")
        payload = _unwrap(payload, "data")
        raw_state = _unwrap(payload, "connection_status", "state", "status")
        try:
            return ConnectionState(str(raw_state).strip().lower())
        except ValueError:
            raise UpstreamError(f"Unknown connection state {raw_state!r} for connection {connection_id}")

    async def create_payment(self, bill_id: str, method: str, amount: Decimal) -> PaymentInitiation:
        """
        Ask the backend to open a checkout for ``amount`` on ``bill_id``.

        Raises:
            GatewayError: transport failure, non-2xx answer or unreadable body
        """
        body = {"bill_id": bill_id, "payment_method": method, "amount": float(amount)}
        try:
            response = await self._client.post("/payments", json=body)
            response.raise_for_status()
            payload = _unwrap(response.json(), "data")
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:200]
            logger.error(
                "Payment initiation rejected (%s): %s",
                exc.response.status_code,
                detail,
                extra={"bill_id": bill_id},
            )
            raise GatewayError(f"Payment provider rejected the payment ({exc.response.status_code})")
        except httpx.HTTPError as exc:
            logger.error("Payment initiation failed: %s", exc, extra={"bill_id": bill_id})
            raise GatewayError("Could not reach the payment provider")
        except ValueError:
            raise GatewayError("Payment provider returned an unreadable response")

        if not isinstance(payload, dict):
            raise GatewayError("Payment provider returned an unreadable response")
        checkout_url = payload.get("checkoutUrl") or payload.get("checkout_url")
        reference = (
            payload.get("externalReference")
            or payload.get("external_reference")
            or payload.get("payment_reference")
            or payload.get("checkout_session_id")
            or payload.get("paymentId")
        )
        return PaymentInitiation(
            checkout_url=checkout_url,
            external_reference=str(reference) if reference else None,
        )

    async def get_payment_status(self, external_reference: str) -> GatewayState:
        """
        Raises:
            GatewayError: lookup failed or the state is not one we know
        """
        try:
            response = await self._client.get(f"/payments/status/{external_reference}")
            response.raise_for_status()
            payload = _unwrap(response.json(), "data")
        except httpx.HTTPError as exc:
            logger.warning(
                "Payment status lookup failed: %s", exc,
                extra={"external_reference": external_reference},
            )
            raise GatewayError("Could not query payment status")
        except ValueError:
            raise GatewayError("Payment provider returned an unreadable status")

        raw_state = _unwrap(payload, "state", "status", "payment_status")
        state = GATEWAY_STATE_ALIASES.get(str(raw_state).strip().lower())
        if state is None:
            raise GatewayError(f"Unknown payment state {raw_state!r}")
        return state
