"""Payment Transaction Workflow

The pay-bill wizard as a strict linear state machine:

    reviewing_bill -> selecting_payment_type -> selecting_method -> awaiting_gateway
                                                                 \\-> confirmed

Going back one step is always allowed until the payment is submitted;
awaiting_gateway, confirmed and cancelled are terminal. Submission is never
retried automatically: a failed submit leaves the wizard on
selecting_method and the user decides whether to try again.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.config import settings
from agaspay.core.exceptions import (
    NoBillFoundError,
    PaymentAlreadyPendingError,
    PaymentNotAllowedError,
    PaymentValidationError,
    WorkflowCancelledError,
    WorkflowStateError,
)
from agaspay.core.logging import get_logger
from agaspay.models.enums import ConnectionState, PaymentType, WorkflowStep
from agaspay.schemas.billing import Bill, BillingSummary
from agaspay.schemas.payment import PaymentIntent, WorkflowResponse
from agaspay.services.balance_calculator import is_unpaid, order_by_urgency, summarize
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.payment_ledger import backend_amount_paid
from agaspay.services.reconciliation_service import ReconciliationService
from agaspay.services.status_classifier import is_payment_offered
from agaspay.utils.money import to_money

logger = get_logger(__name__)

TERMINAL_STEPS = {WorkflowStep.AWAITING_GATEWAY, WorkflowStep.CONFIRMED, WorkflowStep.CANCELLED}

PREVIOUS_STEP = {
    WorkflowStep.SELECTING_PAYMENT_TYPE: WorkflowStep.REVIEWING_BILL,
    WorkflowStep.SELECTING_METHOD: WorkflowStep.SELECTING_PAYMENT_TYPE,
}


class PaymentWorkflow:
    """One payment attempt for one connection. Not reusable once terminal."""

    def __init__(
        self,
        api: BillingApiClient,
        reconciler: ReconciliationService,
        connection_id: str,
        bill_id: Optional[str] = None,
    ) -> None:
        self.handle: UUID = uuid4()
        self.api = api
        self.reconciler = reconciler
        self.connection_id = connection_id
        self.requested_bill_id = bill_id
        self.step = WorkflowStep.REVIEWING_BILL
        self.bill: Optional[Bill] = None
        self.summary: Optional[BillingSummary] = None
        self.payment_type: Optional[PaymentType] = None
        self.amount: Optional[Decimal] = None
        self.method: Optional[str] = None
        self.checkout_url: Optional[str] = None
        self.external_reference: Optional[str] = None
        self.updated_bills: List[Bill] = []

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.step in TERMINAL_STEPS

    def _require(self, step: WorkflowStep) -> None:
        if self.step == WorkflowStep.CANCELLED:
            raise WorkflowCancelledError("This payment was cancelled; start a new one")
        if self.step != step:
            raise WorkflowStateError(f"Cannot do that while {self.step.value}; expected {step.value}")

    def _ensure_alive(self) -> None:
        if self.step == WorkflowStep.CANCELLED:
            raise WorkflowCancelledError("Payment workflow was torn down; discarding late response")

    @property
    def max_amount(self) -> Optional[Decimal]:
        """Upper bound for a partial payment: the bill, or everything owed when several bills are unpaid."""
        if self.bill is None:
            return None
        if self.summary is not None and self.summary.unpaid_count > 1:
            return self.summary.total_due
        return self.bill.balance

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def resolve_bill(self, bills: Sequence[Bill], connection_state: ConnectionState, today: date) -> Bill:
        """
        reviewing_bill -> selecting_payment_type.

        Raises:
            NoBillFoundError: no unpaid bill (or not the requested one) for the connection
            PaymentNotAllowedError: the connection's state does not allow paying online
        """
        self._require(WorkflowStep.REVIEWING_BILL)
        own_bills = [bill for bill in bills if bill.connection_id == self.connection_id]

        if self.requested_bill_id is not None:
            bill = next((b for b in own_bills if b.id == self.requested_bill_id), None)
        else:
            urgent = order_by_urgency(own_bills)
            bill = urgent[0] if urgent else None

        if bill is None or not is_unpaid(bill) or bill.balance <= 0:
            raise NoBillFoundError(f"No payable bill found for connection {self.connection_id}")
        if not is_payment_offered(bill, connection_state):
            raise PaymentNotAllowedError(
                f"Online payment is not available while the connection is {connection_state.value}"
            )

        self.bill = bill
        self.summary = summarize(own_bills, today)
        self.step = WorkflowStep.SELECTING_PAYMENT_TYPE
        return bill

    def select_payment_type(self, payment_type: PaymentType, amount: Optional[Decimal] = None) -> Decimal:
        """
        selecting_payment_type -> selecting_method, once a valid amount is set.

        Full payments are fixed to the bill's balance. Partial payments must
        satisfy 0 < amount <= max_amount; nothing is clamped.
        """
        self._require(WorkflowStep.SELECTING_PAYMENT_TYPE)
        if payment_type == PaymentType.FULL:
            chosen = self.bill.balance
        else:
            if amount is None:
                raise PaymentValidationError("Enter the amount you want to pay")
            try:
                chosen = to_money(amount)
            except ValueError:
                raise PaymentValidationError(f"{amount!r} is not a valid amount")
            if chosen <= 0:
                raise PaymentValidationError("Partial amount must be greater than zero")
            if chosen > self.max_amount:
                raise PaymentValidationError(
                    f"Partial amount {chosen} exceeds the outstanding balance {self.max_amount}"
                )

        self.payment_type = payment_type
        self.amount = chosen
        self.step = WorkflowStep.SELECTING_METHOD
        return chosen

    def select_method(self, method: str) -> None:
        self._require(WorkflowStep.SELECTING_METHOD)
        method = (method or "").strip().lower()
        if method not in settings.PAYMENT_METHODS:
            raise PaymentValidationError(
                f"Unsupported payment method {method!r}; choose one of {', '.join(settings.PAYMENT_METHODS)}"
            )
        self.method = method

    def back(self) -> WorkflowStep:
        if self.is_terminal:
            raise WorkflowStateError("A submitted or cancelled payment cannot go back; start a new one")
        previous = PREVIOUS_STEP.get(self.step)
        if previous is None:
            raise WorkflowStateError("Already at the first step")
        if self.step == WorkflowStep.SELECTING_METHOD:
            self.payment_type = None
            self.amount = None
            self.method = None
        elif self.step == WorkflowStep.SELECTING_PAYMENT_TYPE:
            self.bill = None
            self.summary = None
        self.step = previous
        return previous

    def teardown(self) -> None:
        """Cancel this workflow; responses that arrive later are discarded."""
        if self.step in (WorkflowStep.AWAITING_GATEWAY, WorkflowStep.CONFIRMED):
            return
        self.step = WorkflowStep.CANCELLED

    def build_intent(self) -> PaymentIntent:
        self._require(WorkflowStep.SELECTING_METHOD)
        if self.method is None:
            raise PaymentValidationError("Choose a payment method")
        return PaymentIntent(
            bill_id=self.bill.id,
            connection_id=self.connection_id,
            method=self.method,
            type=self.payment_type,
            amount=self.amount,
        )

    async def submit(self, db: AsyncSession, supersede_pending: bool = False) -> WorkflowStep:
        """
        selecting_method -> awaiting_gateway (checkout redirect) or confirmed.

        Raises:
            PaymentAlreadyPendingError: a checkout is still pending for the connection
            GatewayError: the payment could not be initiated; user may retry
            PaymentValidationError: intent is incomplete
            WorkflowCancelledError: the workflow was torn down while waiting
        """
        intent = self.build_intent()
        log_extra = {"connection_id": self.connection_id, "bill_id": intent.bill_id}

        # Check before touching the provider so nothing is charged twice
        pending = await self.reconciler.get_marker(db, self.connection_id)
        if pending is not None and not supersede_pending:
            raise PaymentAlreadyPendingError(
                "A payment for this connection is still being processed",
                connection_id=self.connection_id,
                external_reference=pending.external_reference,
            )

        # Baseline for telling later whether the backend itself applied the payment
        intent = intent.model_copy(update={
            "backend_paid": await backend_amount_paid(self.api, self.connection_id, intent.bill_id),
        })

        self._ensure_alive()
        initiation = await self.api.create_payment(intent.bill_id, intent.method, intent.amount)
        intent = intent.model_copy(update={"external_reference": initiation.external_reference})

        if initiation.checkout_url:
            if self.step == WorkflowStep.CANCELLED:
                logger.warning("Discarding checkout for a torn-down workflow", extra=log_extra)
                raise WorkflowCancelledError("Payment workflow was torn down; checkout discarded")
            await self.reconciler.begin_pending(db, intent, supersede=supersede_pending)
            self.checkout_url = initiation.checkout_url
            self.external_reference = intent.external_reference
            self.step = WorkflowStep.AWAITING_GATEWAY
            logger.info("Redirecting to checkout", extra={**log_extra, "external_reference": intent.external_reference})
            return self.step

        # Settled without a redirect: money has moved, record it even if the
        # user navigated away in the meantime.
        if not intent.external_reference:
            intent = intent.model_copy(update={"external_reference": f"direct-{self.handle.hex}"})
        self.updated_bills = await self.reconciler.settle_synchronously(db, intent)
        self.external_reference = intent.external_reference
        if self.step == WorkflowStep.CANCELLED:
            logger.info("Payment settled after the workflow was torn down", extra=log_extra)
            return self.step
        self.step = WorkflowStep.CONFIRMED
        logger.info("Payment settled without checkout", extra={**log_extra, "external_reference": intent.external_reference})
        return self.step

    def snapshot(self) -> WorkflowResponse:
        return WorkflowResponse(
            handle=self.handle,
            step=self.step,
            connection_id=self.connection_id,
            bill=self.bill,
            payment_type=self.payment_type,
            amount=self.amount,
            max_amount=self.max_amount,
            method=self.method,
            checkout_url=self.checkout_url,
            external_reference=self.external_reference,
        )
