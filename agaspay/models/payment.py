"""Payment Models: pending checkout markers and applied payment records"""

from sqlalchemy import Column, Enum, Numeric, String, UniqueConstraint

from agaspay.models.base import BaseModel, ConnectionScopedMixin
from agaspay.models.enums import PaymentRecordStatus, PaymentType


def _values(enum_cls):
    return [member.value for member in enum_cls]


# Shared so Postgres sees a single payment_type enum type
payment_type_enum = Enum(PaymentType, name="payment_type", values_callable=_values)


class PendingPaymentMarker(BaseModel, ConnectionScopedMixin):
    """
    Durable record of a checkout the user was redirected to.

    Only ever inserted or deleted, never updated in place. The unique
    connection_id keeps at most one pending checkout per connection.
    """
    __tablename__ = "pending_payment_markers"
    __table_args__ = (
        UniqueConstraint("connection_id", name="uq_pending_payment_markers_connection"),
    )

    external_reference = Column(String(128), nullable=False, unique=True)
    bill_id = Column(String(64), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(32), nullable=False)
    payment_type = Column(payment_type_enum, nullable=False)
    # Target bill's amount_paid on the billing backend when the checkout began
    backend_paid = Column(Numeric(12, 2), nullable=True)

    def __repr__(self) -> str:
        return f"<PendingPaymentMarker {self.connection_id} {self.external_reference}>"


class PaymentRecord(BaseModel, ConnectionScopedMixin):
    """
    One applied payment allocation against one bill.

    A checkout that spills over several bills produces one row per bill,
    all sharing the provider's external reference.
    """
    __tablename__ = "payment_records"
    __table_args__ = (
        UniqueConstraint("external_reference", "bill_id", name="uq_payment_records_reference_bill"),
    )

    external_reference = Column(String(128), nullable=False, index=True)
    bill_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(32), nullable=False)
    payment_type = Column(payment_type_enum, nullable=False)
    status = Column(
        Enum(PaymentRecordStatus, name="payment_record_status", values_callable=_values),
        default=PaymentRecordStatus.PENDING,
        nullable=False,
    )
    # Bill's amount_paid on the billing backend before this payment; NULL when
    # the backend had already applied it
    backend_paid = Column(Numeric(12, 2), nullable=True)

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.bill_id} {self.amount} - {self.status}>"
