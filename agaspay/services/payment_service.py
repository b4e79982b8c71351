"""Payment Service - starts payment workflows and keeps their handles"""

import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.config import settings
from agaspay.core.exceptions import WorkflowCancelledError
from agaspay.core.logging import get_logger
from agaspay.models.enums import PaymentType, ReconcileOutcome, WorkflowStep
from agaspay.schemas.payment import ReconcileResult
from agaspay.services.billing_api import BillingApiClient
from agaspay.services.payment_ledger import load_connection_bills
from agaspay.services.payment_workflow import PaymentWorkflow
from agaspay.services.reconciliation_service import ReconciliationService
from agaspay.utils.time import get_portal_today

logger = get_logger(__name__)

FINISHED_OUTCOMES = {
    ReconcileOutcome.RESOLVED_SUCCESS,
    ReconcileOutcome.RESOLVED_FAILURE,
    ReconcileOutcome.EXPIRED,
}


class WorkflowRegistry:
    """
    In-memory handles of open payment workflows.

    Handles older than ``max_age`` (the pending checkout retention by
    default) are evicted whenever a new workflow is added.
    """

    def __init__(self, max_age: Optional[timedelta] = None) -> None:
        self.max_age = max_age or timedelta(hours=settings.PAYMENT_MARKER_RETENTION_HOURS)
        self._workflows: Dict[UUID, Tuple[float, PaymentWorkflow]] = {}

    def add(self, workflow: PaymentWorkflow) -> PaymentWorkflow:
        self.evict_stale()
        self._workflows[workflow.handle] = (time.monotonic(), workflow)
        return workflow

    def get(self, handle: UUID) -> PaymentWorkflow:
        entry = self._workflows.get(handle)
        if entry is None:
            raise WorkflowCancelledError(f"Payment workflow {handle} does not exist or was closed")
        return entry[1]

    def discard(self, handle: UUID) -> None:
        entry = self._workflows.pop(handle, None)
        if entry is not None:
            entry[1].teardown()

    def discard_checkout(self, connection_id: str, external_reference: Optional[str]) -> int:
        """Drop the workflows waiting on a checkout that has been resolved."""
        handles = [
            handle
            for handle, (_, workflow) in self._workflows.items()
            if workflow.connection_id == connection_id
            and workflow.step == WorkflowStep.AWAITING_GATEWAY
            and (external_reference is None or workflow.external_reference == external_reference)
        ]
        for handle in handles:
            self.discard(handle)
        return len(handles)

    def evict_stale(self, now: Optional[float] = None) -> int:
        """Drop handles opened more than ``max_age`` ago; ``now`` is a time.monotonic() value."""
        cutoff = (now if now is not None else time.monotonic()) - self.max_age.total_seconds()
        stale = [handle for handle, (opened, _) in self._workflows.items() if opened < cutoff]
        for handle in stale:
            self.discard(handle)
        if stale:
            logger.info("Evicted %d abandoned payment workflow(s)", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._workflows)


class PaymentService:
    def __init__(
        self,
        api: BillingApiClient,
        reconciler: ReconciliationService,
        registry: WorkflowRegistry,
    ) -> None:
        self.api = api
        self.reconciler = reconciler
        self.registry = registry

    async def start_payment(
        self,
        db: AsyncSession,
        connection_id: str,
        bill_id: Optional[str] = None,
        payment_type: Optional[PaymentType] = None,
        amount: Optional[Decimal] = None,
        today: Optional[date] = None,
    ) -> PaymentWorkflow:
        """
        Open a payment workflow for a connection's bill.

        Fetches the connection's bills (with payments recorded here but not
        yet shown by the backend applied) and lifecycle state, resolves the
        bill and, when a payment type is given, selects it. The returned
        workflow is registered under its handle.
        """
        today = today or get_portal_today()
        workflow = PaymentWorkflow(self.api, self.reconciler, connection_id, bill_id=bill_id)

        bills, _ = await load_connection_bills(self.api, db, connection_id)
        connection_state = await self.api.get_connection_state(connection_id)
        workflow.resolve_bill(bills, connection_state, today)
        if payment_type is not None:
            workflow.select_payment_type(payment_type, amount)

        logger.info(
            "Payment workflow %s started at %s",
            workflow.handle,
            workflow.step.value,
            extra={"connection_id": connection_id, "bill_id": workflow.bill.id},
        )
        return self.registry.add(workflow)

    async def reload_bill(
        self,
        db: AsyncSession,
        workflow: PaymentWorkflow,
        today: Optional[date] = None,
    ) -> PaymentWorkflow:
        """Re-fetch bills for a workflow that went back to reviewing_bill."""
        bills, _ = await load_connection_bills(self.api, db, workflow.connection_id)
        connection_state = await self.api.get_connection_state(workflow.connection_id)
        workflow.resolve_bill(bills, connection_state, today or get_portal_today())
        return workflow

    async def reconcile(self, db: AsyncSession, connection_id: str) -> ReconcileResult:
        """Resolve the connection's pending checkout and close the workflow that was waiting on it."""
        result = await self.reconciler.reconcile(db, connection_id)
        if result.outcome in FINISHED_OUTCOMES:
            self.registry.discard_checkout(connection_id, result.external_reference)
        return result
