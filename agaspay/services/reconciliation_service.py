"""Checkout Reconciliation Service

Owns the pending payment marker: the one piece of state that survives the
user leaving the portal for the provider's checkout page. A marker is
created right before the redirect, read when the user comes back, and
deleted once the checkout is resolved. It is never updated in place.

Markers older than PAYMENT_MARKER_RETENTION_HOURS that the provider still
reports as pending (or cannot report on) are expired: the marker is dropped
and the user is told to check with the provider before paying again.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.config import settings
from agaspay.core.events import EventBus, PaymentResolved
from agaspay.core.exceptions import (
    BillingEngineError,
    GatewayError,
    NoBillFoundError,
    PaymentAlreadyPendingError,
    PaymentDeclinedError,
    PaymentValidationError,
    ReconciliationTimeoutError,
)
from agaspay.core.logging import get_logger
from agaspay.models.enums import GatewayState, PaymentRecordStatus, PaymentStatus, PaymentType, ReconcileOutcome
from agaspay.models.payment import PaymentRecord, PendingPaymentMarker
from agaspay.schemas.billing import Bill
from agaspay.schemas.payment import PaymentIntent, ReconcileResult
from agaspay.schemas.responses import ErrorDetail
from agaspay.services.balance_calculator import allocate_payment, settle_consolidated
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.payment_ledger import (
    backend_amount_paid,
    fetch_backend_bills,
    overlay_recorded_payments,
    unreflected_records,
)
from agaspay.utils.money import ZERO
from agaspay.utils.time import get_utc_now

logger = get_logger(__name__)


def _error_detail(exc: BillingEngineError) -> ErrorDetail:
    return ErrorDetail(code=exc.code, message=exc.message)


class ReconciliationService:
    def __init__(
        self,
        api: BillingApiClient,
        events: EventBus,
        retention: Optional[timedelta] = None,
    ) -> None:
        self.api = api
        self.events = events
        self.retention = retention or timedelta(hours=settings.PAYMENT_MARKER_RETENTION_HOURS)

    # ------------------------------------------------------------------
    # Marker lifecycle
    # ------------------------------------------------------------------

    async def get_marker(self, db: AsyncSession, connection_id: str) -> Optional[PendingPaymentMarker]:
        result = await db.execute(
            select(PendingPaymentMarker).where(PendingPaymentMarker.connection_id == connection_id)
        )
        return result.scalar_one_or_none()

    def is_expired(self, marker: PendingPaymentMarker, now: Optional[datetime] = None) -> bool:
        now = now or get_utc_now()
        return now - marker.created_at > self.retention

    async def begin_pending(
        self,
        db: AsyncSession,
        intent: PaymentIntent,
        supersede: bool = False,
    ) -> PendingPaymentMarker:
        """
        Persist the marker for a checkout the user is about to be sent to.

        Raises:
            PaymentAlreadyPendingError: the connection already has a marker
                and the user did not confirm abandoning it
            GatewayError: the intent has no provider reference to reconcile by
        """
        if not intent.external_reference:
            raise GatewayError("Payment provider did not return a reference for the checkout")

        existing = await self.get_marker(db, intent.connection_id)
        if existing is not None:
            if not supersede:
                raise PaymentAlreadyPendingError(
                    "A payment for this connection is still being processed",
                    connection_id=intent.connection_id,
                    external_reference=existing.external_reference,
                )
            logger.warning(
                "Superseding pending checkout %s at user request",
                existing.external_reference,
                extra={"connection_id": intent.connection_id, "external_reference": existing.external_reference},
            )
            await db.delete(existing)
            await db.flush()

        backend_paid = intent.backend_paid
        if backend_paid is None:
            backend_paid = await backend_amount_paid(self.api, intent.connection_id, intent.bill_id)

        marker = PendingPaymentMarker(
            connection_id=intent.connection_id,
            bill_id=intent.bill_id,
            external_reference=intent.external_reference,
            amount=intent.amount,
            method=intent.method,
            payment_type=intent.type,
            backend_paid=backend_paid,
            created_at=get_utc_now(),
        )
        db.add(marker)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            raise PaymentAlreadyPendingError(
                "A payment for this connection is still being processed",
                connection_id=intent.connection_id,
                external_reference=intent.external_reference,
            )
        await db.refresh(marker)
        logger.info(
            "Pending checkout recorded",
            extra={
                "connection_id": marker.connection_id,
                "bill_id": marker.bill_id,
                "external_reference": marker.external_reference,
            },
        )
        return marker

    async def _clear(self, db: AsyncSession, marker: PendingPaymentMarker) -> None:
        await db.delete(marker)
        await db.commit()

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile(
        self,
        db: AsyncSession,
        connection_id: str,
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """
        Resolve the connection's pending checkout against the provider.

        Safe to call repeatedly: once resolved the marker is gone and later
        calls report NO_PENDING; a marker whose payment was already recorded
        is cleared without applying it again.
        """
        now = now or get_utc_now()
        marker = await self.get_marker(db, connection_id)
        if marker is None:
            return ReconcileResult(outcome=ReconcileOutcome.NO_PENDING, connection_id=connection_id)

        reference = marker.external_reference
        log_extra = {"connection_id": connection_id, "external_reference": reference}

        if await self._is_recorded(db, reference):
            logger.info("Checkout already applied, clearing marker", extra=log_extra)
            await self._clear(db, marker)
            return ReconcileResult(
                outcome=ReconcileOutcome.RESOLVED_SUCCESS,
                connection_id=connection_id,
                external_reference=reference,
                already_applied=True,
            )

        try:
            state = await self.api.get_payment_status(reference)
        except GatewayError:
            if self.is_expired(marker, now):
                return await self._expire(db, marker)
            logger.warning("Payment status unavailable, checkout stays pending", extra=log_extra)
            return ReconcileResult(
                outcome=ReconcileOutcome.STILL_PENDING,
                connection_id=connection_id,
                external_reference=reference,
            )

        if state == GatewayState.SUCCESS:
            updated, already_applied = await self._record_payment(
                db,
                connection_id=connection_id,
                bill_id=marker.bill_id,
                amount=marker.amount,
                method=marker.method,
                payment_type=marker.payment_type,
                reference=reference,
                backend_paid=marker.backend_paid,
                marker=marker,
            )
            return ReconcileResult(
                outcome=ReconcileOutcome.RESOLVED_SUCCESS,
                connection_id=connection_id,
                external_reference=reference,
                updated_bills=updated,
                already_applied=already_applied,
            )

        if state == GatewayState.FAILURE:
            logger.info("Checkout failed at provider, clearing marker", extra=log_extra)
            await self._clear(db, marker)
            return ReconcileResult(
                outcome=ReconcileOutcome.RESOLVED_FAILURE,
                connection_id=connection_id,
                external_reference=reference,
                error=_error_detail(PaymentDeclinedError("Your payment was not completed. You may try again.")),
            )

        if self.is_expired(marker, now):
            return await self._expire(db, marker)
        return ReconcileResult(
            outcome=ReconcileOutcome.STILL_PENDING,
            connection_id=connection_id,
            external_reference=reference,
        )

    async def _expire(self, db: AsyncSession, marker: PendingPaymentMarker) -> ReconcileResult:
        error = ReconciliationTimeoutError(
            "We could not confirm your payment. Please check with your e-wallet provider "
            "before paying again."
        )
        logger.warning(
            "Pending checkout expired unresolved",
            extra={"connection_id": marker.connection_id, "external_reference": marker.external_reference},
        )
        result = ReconcileResult(
            outcome=ReconcileOutcome.EXPIRED,
            connection_id=marker.connection_id,
            external_reference=marker.external_reference,
            error=_error_detail(error),
        )
        await self._clear(db, marker)
        return result

    async def settle_synchronously(self, db: AsyncSession, intent: PaymentIntent) -> List[Bill]:
        """Record a payment the provider settled without a checkout redirect."""
        if not intent.external_reference:
            raise GatewayError("Payment provider did not return a reference for the payment")
        updated, _ = await self._record_payment(
            db,
            connection_id=intent.connection_id,
            bill_id=intent.bill_id,
            amount=intent.amount,
            method=intent.method,
            payment_type=intent.type,
            reference=intent.external_reference,
            backend_paid=intent.backend_paid,
        )
        return updated

    async def sweep_expired(self, db: AsyncSession, now: Optional[datetime] = None) -> List[ReconcileResult]:
        """Reconcile every marker past the retention window (stuck checkouts)."""
        now = now or get_utc_now()
        result = await db.execute(
            select(PendingPaymentMarker.connection_id).where(
                PendingPaymentMarker.created_at < now - self.retention
            )
        )
        return [await self.reconcile(db, connection_id, now=now) for connection_id in result.scalars().all()]

    async def list_payments(self, db: AsyncSession, connection_id: str) -> Sequence[PaymentRecord]:
        result = await db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.connection_id == connection_id)
            .order_by(PaymentRecord.created_at.desc())
        )
        return result.scalars().all()

    # ------------------------------------------------------------------
    # Applying a settled payment
    # ------------------------------------------------------------------

    async def _is_recorded(self, db: AsyncSession, reference: str) -> bool:
        result = await db.execute(
            select(PaymentRecord.id).where(PaymentRecord.external_reference == reference).limit(1)
        )
        return result.first() is not None

    def _applied_by_backend(
        self,
        target: Optional[Bill],
        backend_paid: Optional[Decimal],
        amount: Decimal,
        records: Sequence[PaymentRecord],
    ) -> bool:
        """
        Whether the backend's amount_paid for the target bill has grown by
        this payment since the checkout began.

        Growth that only catches up on earlier payments the backend had not
        reflected yet does not count.
        """
        if target is None or backend_paid is None:
            return False
        earlier = [record for record in records if record.bill_id == target.id]
        lagging = ZERO
        if earlier:
            recorded = sum((record.amount for record in earlier), ZERO)
            caught_up = max(ZERO, backend_paid - min(record.backend_paid for record in earlier))
            lagging = max(ZERO, recorded - caught_up)
        expected = min(amount, target.total_amount - backend_paid - lagging)
        return expected > 0 and target.amount_paid - backend_paid - lagging >= expected

    def _allocate(
        self,
        bills: Sequence[Bill],
        connection_id: str,
        bill_id: str,
        amount: Decimal,
    ) -> Tuple[List[Tuple[Bill, Decimal]], List[Bill]]:
        """Returns (allocations, consolidated bills settled by them)."""
        try:
            allocations = allocate_payment(bills, bill_id, amount)
        except (NoBillFoundError, PaymentValidationError) as exc:
            # Less is owed than the checkout amount: the backend applied the
            # payment before a baseline could be taken.
            logger.warning(
                "Bills no longer match checkout amount, recording against target bill only: %s",
                exc.message,
                extra={"connection_id": connection_id, "bill_id": bill_id},
            )
            return [], []

        settled: List[Bill] = []
        for bill, _ in allocations:
            settled.extend(settle_consolidated(bills, bill))
        return allocations, settled

    async def _record_payment(
        self,
        db: AsyncSession,
        connection_id: str,
        bill_id: str,
        amount: Decimal,
        method: str,
        payment_type: PaymentType,
        reference: str,
        backend_paid: Optional[Decimal] = None,
        marker: Optional[PendingPaymentMarker] = None,
    ) -> Tuple[List[Bill], bool]:
        backend_bills, _ = await fetch_backend_bills(self.api, connection_id)
        records = await unreflected_records(db, connection_id)
        target = next((bill for bill in backend_bills if bill.id == bill_id), None)

        if self._applied_by_backend(target, backend_paid, amount, records):
            logger.info(
                "Billing backend already applied the payment, recording it only",
                extra={"connection_id": connection_id, "bill_id": bill_id, "external_reference": reference},
            )
            allocations, settled = [], []
        else:
            current = overlay_recorded_payments(backend_bills, records)
            allocations, settled = self._allocate(current, connection_id, bill_id, amount)

        # (bill_id, amount, fully paid, backend baseline while unreflected)
        baselines = {bill.id: bill.amount_paid for bill in backend_bills}
        entries = [
            (bill.id, portion, bill.payment_status == PaymentStatus.PAID, baselines.get(bill.id))
            for bill, portion in allocations
        ]
        if not entries:
            entries = [(bill_id, amount, target is not None and target.payment_status == PaymentStatus.PAID, None)]

        for entry_bill_id, portion, fully_paid, baseline in entries:
            db.add(PaymentRecord(
                connection_id=connection_id,
                bill_id=entry_bill_id,
                external_reference=reference,
                amount=portion,
                method=method,
                payment_type=payment_type,
                # Partial payments wait for treasurer confirmation
                status=PaymentRecordStatus.CONFIRMED if fully_paid else PaymentRecordStatus.PENDING,
                backend_paid=baseline,
                created_at=get_utc_now(),
            ))
        if marker is not None:
            await db.delete(marker)
        try:
            await db.commit()
        except IntegrityError:
            # Another reconcile of the same checkout won the race
            await db.rollback()
            logger.info(
                "Checkout already recorded by a concurrent reconcile",
                extra={"connection_id": connection_id, "external_reference": reference},
            )
            if marker is not None:
                stale = await self.get_marker(db, connection_id)
                if stale is not None and stale.external_reference == reference:
                    await self._clear(db, stale)
            return [], True

        logger.info(
            "Payment of %s applied across %d bill(s)",
            amount,
            len(entries),
            extra={"connection_id": connection_id, "bill_id": bill_id, "external_reference": reference},
        )

        if allocations:
            applied = allocations + [(bill, ZERO) for bill in settled]
        else:
            # Bills as the backend reports them already include this payment
            applied = [(target, amount)] if target is not None else []

        for bill, portion in applied:
            await self.events.publish(PaymentResolved(
                bill_id=bill.id,
                connection_id=connection_id,
                new_balance=bill.balance,
                amount_applied=portion,
                external_reference=reference,
            ))
        return [bill for bill, _ in applied], False
