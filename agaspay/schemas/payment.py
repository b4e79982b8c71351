from typing import List, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from agaspay.models.enums import (
    GatewayState,
    PaymentRecordStatus,
    PaymentType,
    ReconcileOutcome,
    WorkflowStep,
)
from agaspay.schemas.billing import Bill
from agaspay.schemas.responses import ErrorDetail


class PaymentIntent(BaseModel):
    """One payment attempt, built when the user submits the wizard"""
    bill_id: str
    connection_id: str
    method: str
    type: PaymentType
    amount: Decimal = Field(..., gt=0)
    external_reference: Optional[str] = None
    # Bill's amount_paid on the billing backend before the payment was initiated
    backend_paid: Optional[Decimal] = None


class PaymentInitiation(BaseModel):
    """What the payment-initiation endpoint answered"""
    checkout_url: Optional[str] = None
    external_reference: Optional[str] = None


class PaymentStatusReport(BaseModel):
    external_reference: str
    state: GatewayState


# Workflow requests
class WorkflowStart(BaseModel):
    connection_id: str
    bill_id: Optional[str] = None
    payment_type: Optional[PaymentType] = None
    amount: Optional[Decimal] = None


class PaymentTypeSelection(BaseModel):
    payment_type: PaymentType
    amount: Optional[Decimal] = None


class MethodSelection(BaseModel):
    method: str


class SubmitRequest(BaseModel):
    # Explicit confirmation to abandon a checkout that is still pending
    supersede_pending: bool = False


class WorkflowResponse(BaseModel):
    """Snapshot of a payment wizard for the portal"""
    handle: UUID
    step: WorkflowStep
    connection_id: str
    bill: Optional[Bill] = None
    payment_type: Optional[PaymentType] = None
    amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    method: Optional[str] = None
    checkout_url: Optional[str] = None
    external_reference: Optional[str] = None


class PendingMarkerResponse(BaseModel):
    connection_id: str
    bill_id: str
    external_reference: str
    amount: Decimal
    method: str
    payment_type: PaymentType
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentRecordResponse(BaseModel):
    id: UUID
    connection_id: str
    bill_id: str
    external_reference: str
    amount: Decimal
    method: str
    payment_type: PaymentType
    status: PaymentRecordStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReconcileResult(BaseModel):
    """Outcome of resolving a connection's pending checkout"""
    outcome: ReconcileOutcome
    connection_id: str
    external_reference: Optional[str] = None
    updated_bills: List[Bill] = Field(default_factory=list)
    error: Optional[ErrorDetail] = None
    already_applied: bool = False
