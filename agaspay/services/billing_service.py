"""Billing Service - per-connection billing overview for the portal"""

import time
from datetime import date
from typing import Callable, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.config import settings
from agaspay.core.events import EventBus, PaymentResolved
from agaspay.core.logging import get_logger
from agaspay.models.enums import RenderedStatus
from agaspay.schemas.billing import BillingOverview, BillView
from agaspay.services.balance_calculator import summarize
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.payment_ledger import load_connection_bills
from agaspay.services.status_classifier import is_payment_offered, safe_classify
from agaspay.utils.time import get_portal_today

logger = get_logger(__name__)


class BillingService:
    """
    Builds the billing overview of a connection: normalized bills, the
    balance summary and one status per bill.

    Overviews are cached for BILLING_SUMMARY_CACHE_SECONDS and dropped as
    soon as a PaymentResolved event arrives for the connection.
    """

    def __init__(
        self,
        api: BillingApiClient,
        events: Optional[EventBus] = None,
        cache_seconds: Optional[int] = None,
    ) -> None:
        self.api = api
        self.events = events
        self.cache_seconds = settings.BILLING_SUMMARY_CACHE_SECONDS if cache_seconds is None else cache_seconds
        self._cache: Dict[Tuple[str, date], Tuple[float, BillingOverview]] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None
        if events is not None:
            self._unsubscribe = events.on_payment_resolved(self.invalidate_for_event)

    def close(self) -> None:
        """Stop listening for payment events."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def invalidate(self, connection_id: str) -> None:
        for key in [key for key in self._cache if key[0] == connection_id]:
            del self._cache[key]

    def invalidate_for_event(self, event: PaymentResolved) -> None:
        self.invalidate(event.connection_id)

    async def get_billing_summary(
        self,
        db: AsyncSession,
        connection_id: str,
        today: Optional[date] = None,
    ) -> BillingOverview:
        today = today or get_portal_today()
        key = (connection_id, today)
        cached = self._cache.get(key)
        if cached is not None and time.monotonic() - cached[0] < self.cache_seconds:
            return cached[1]

        bills, rejected = await load_connection_bills(self.api, db, connection_id)
        connection_state = await self.api.get_connection_state(connection_id)
        summary = summarize(bills, today)

        views = [
            BillView(
                bill_id=bill.id,
                status=safe_classify(bill, connection_state, summary, today),
                bill=bill,
                payable=is_payment_offered(bill, connection_state),
            )
            for bill in sorted(bills, key=lambda b: b.due_date, reverse=True)
        ]
        views.extend(
            BillView(bill_id=bill_id or "unknown", status=RenderedStatus.UNKNOWN, error=exc.message)
            for bill_id, exc in rejected
        )

        overview = BillingOverview(
            connection_id=connection_id,
            connection_state=connection_state,
            summary=summary,
            bills=views,
            as_of=today,
        )
        if self.cache_seconds > 0:
            self._cache[key] = (time.monotonic(), overview)
        return overview
