from typing import Dict, List, Optional, Tuple
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from agaspay.models.enums import ConnectionState, PaymentStatus, RenderedStatus


class Bill(BaseModel):
    """
    One billing cycle of one water connection.

    ``balance`` is always derived from ``total_amount - amount_paid`` and the
    payment status must agree with the amounts: a fully paid bill is
    ``paid``, a partly paid one ``partial``. Instances are immutable; a
    payment produces a new Bill.
    """
    id: str
    connection_id: str
    due_date: date
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    generated_at: Optional[datetime] = None
    previous_reading: Optional[Decimal] = None
    present_reading: Optional[Decimal] = None
    previous_balance: Decimal = Field(default=Decimal("0.00"), ge=0)
    current_charges: Optional[Decimal] = None
    total_amount: Decimal = Field(..., ge=0)
    amount_paid: Decimal = Field(default=Decimal("0.00"), ge=0)
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    data_quality_flags: Tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def balance(self) -> Decimal:
        return self.total_amount - self.amount_paid

    @computed_field
    @property
    def consumption(self) -> Optional[Decimal]:
        if self.previous_reading is None or self.present_reading is None:
            return None
        return self.present_reading - self.previous_reading

    @model_validator(mode="after")
    def check_amounts_match_status(self) -> "Bill":
        if self.amount_paid > self.total_amount:
            raise ValueError("amount_paid exceeds total_amount")
        if self.consumption is not None and self.consumption < 0:
            raise ValueError("present_reading is lower than previous_reading")
        fully_paid = self.amount_paid == self.total_amount
        if fully_paid != (self.payment_status == PaymentStatus.PAID):
            raise ValueError(
                f"status {self.payment_status.value} contradicts "
                f"amount_paid={self.amount_paid} total_amount={self.total_amount}"
            )
        if not fully_paid and self.amount_paid > 0 and self.payment_status != PaymentStatus.PARTIAL:
            raise ValueError("partly paid bill must have status partial")
        if self.amount_paid == 0 and self.payment_status == PaymentStatus.PARTIAL:
            raise ValueError("bill with nothing paid cannot be partial")
        return self

    def days_until_due(self, today: date) -> int:
        """Whole days from today to the due date; negative once past due."""
        return (self.due_date - today).days


class BillingSummary(BaseModel):
    """Aggregates over the bills of one connection"""
    total_due: Decimal
    per_bill_balance: Dict[str, Decimal]
    earliest_overdue_days: Optional[int] = None
    earliest_bill_id: Optional[str] = None
    unpaid_count: int = 0
    past_due_count: int = 0


class BillView(BaseModel):
    """A bill as rendered in the portal, with its single status badge"""
    bill_id: str
    status: RenderedStatus
    bill: Optional[Bill] = None
    payable: bool = False
    error: Optional[str] = None


class BillingOverview(BaseModel):
    """Everything the portal needs to render a connection's billing card"""
    connection_id: str
    connection_state: ConnectionState
    summary: BillingSummary
    bills: List[BillView]
    as_of: date
