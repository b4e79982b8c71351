"""Payment endpoints - the pay-bill wizard and checkout reconciliation"""

from typing import Any, List
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.api import deps
from agaspay.config import settings
from agaspay.core.rate_limit import limiter
from agaspay.models.enums import WorkflowStep
from agaspay.schemas.payment import (
    MethodSelection,
    PaymentRecordResponse,
    PaymentTypeSelection,
    PendingMarkerResponse,
    ReconcileResult,
    SubmitRequest,
    WorkflowResponse,
    WorkflowStart,
)
from agaspay.schemas.responses import SuccessResponse
from agaspay.services.payment_service import PaymentService, WorkflowRegistry
from agaspay.services.reconciliation_service import ReconciliationService

router = APIRouter()


@router.post("/workflows", response_model=SuccessResponse[WorkflowResponse])
async def start_payment(
    body: WorkflowStart,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> Any:
    """Open the pay-bill wizard on the requested bill, or the most urgent unpaid one."""
    workflow = await service.start_payment(
        db,
        body.connection_id,
        bill_id=body.bill_id,
        payment_type=body.payment_type,
        amount=body.amount,
    )
    return SuccessResponse(data=workflow.snapshot(), message="Payment started")


@router.get("/workflows/{handle}", response_model=SuccessResponse[WorkflowResponse])
async def get_workflow(
    handle: UUID,
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    return SuccessResponse(data=registry.get(handle).snapshot())


@router.post("/workflows/{handle}/bill", response_model=SuccessResponse[WorkflowResponse])
async def review_bill(
    handle: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    """Confirm the bill again after going back to the review step."""
    workflow = await service.reload_bill(db, registry.get(handle))
    return SuccessResponse(data=workflow.snapshot())


@router.post("/workflows/{handle}/payment-type", response_model=SuccessResponse[WorkflowResponse])
async def select_payment_type(
    handle: UUID,
    body: PaymentTypeSelection,
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    """Choose full or partial payment. Partial amounts above the balance are rejected."""
    workflow = registry.get(handle)
    workflow.select_payment_type(body.payment_type, body.amount)
    return SuccessResponse(data=workflow.snapshot())


@router.post("/workflows/{handle}/method", response_model=SuccessResponse[WorkflowResponse])
async def select_method(
    handle: UUID,
    body: MethodSelection,
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    workflow = registry.get(handle)
    workflow.select_method(body.method)
    return SuccessResponse(data=workflow.snapshot())


@router.post("/workflows/{handle}/back", response_model=SuccessResponse[WorkflowResponse])
async def go_back(
    handle: UUID,
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    workflow = registry.get(handle)
    workflow.back()
    return SuccessResponse(data=workflow.snapshot())


@router.post("/workflows/{handle}/submit", response_model=SuccessResponse[WorkflowResponse])
@limiter.limit(settings.PAYMENT_SUBMIT_RATE_LIMIT)
async def submit_payment(
    request: Request,
    handle: UUID,
    body: SubmitRequest,
    db: AsyncSession = Depends(deps.get_db),
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    """
    Submit the payment once. The response carries the checkout URL to
    redirect to, or the confirmed step when the provider settled directly.
    """
    workflow = registry.get(handle)
    step = await workflow.submit(db, supersede_pending=body.supersede_pending)
    snapshot = workflow.snapshot()
    if step == WorkflowStep.CONFIRMED:
        registry.discard(handle)
        return SuccessResponse(data=snapshot, message="Payment confirmed")
    return SuccessResponse(data=snapshot, message="Redirect to checkout to complete the payment")


@router.delete("/workflows/{handle}", response_model=SuccessResponse)
async def cancel_payment(
    handle: UUID,
    registry: WorkflowRegistry = Depends(deps.get_workflow_registry),
) -> Any:
    """Close the wizard. Provider answers that arrive afterwards are discarded."""
    registry.discard(handle)
    return SuccessResponse(message="Payment cancelled")


@router.post("/reconcile/{connection_id}", response_model=SuccessResponse[ReconcileResult])
async def reconcile_payment(
    connection_id: str,
    db: AsyncSession = Depends(deps.get_db),
    service: PaymentService = Depends(deps.get_payment_service),
) -> Any:
    """Resolve the pending checkout after the user returns from the provider."""
    result = await service.reconcile(db, connection_id)
    return SuccessResponse(data=result, message=result.outcome.value)


@router.get("/pending/{connection_id}", response_model=SuccessResponse[PendingMarkerResponse])
async def get_pending_payment(
    connection_id: str,
    db: AsyncSession = Depends(deps.get_db),
    reconciler: ReconciliationService = Depends(deps.get_reconciliation_service),
) -> Any:
    marker = await reconciler.get_marker(db, connection_id)
    if marker is None:
        return SuccessResponse(data=None, message="No pending payment")
    return SuccessResponse(data=PendingMarkerResponse.model_validate(marker))


@router.get("/history/{connection_id}", response_model=SuccessResponse[List[PaymentRecordResponse]])
async def get_payment_history(
    connection_id: str,
    db: AsyncSession = Depends(deps.get_db),
    reconciler: ReconciliationService = Depends(deps.get_reconciliation_service),
) -> Any:
    """Payments recorded for a connection, newest first."""
    records = await reconciler.list_payments(db, connection_id)
    return SuccessResponse(data=[PaymentRecordResponse.model_validate(r) for r in records])
