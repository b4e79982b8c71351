"""Centralized Enum Definitions"""

import enum


# Bills
class PaymentStatus(str, enum.Enum):
    """Bill payment status as recorded by the billing backend"""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"
    OVERDUE = "overdue"
    CONSOLIDATED = "consolidated"


# Statuses that still carry an outstanding balance. Consolidated bills were
# rolled into a later bill's arrears but are counted as unpaid.
UNPAID_STATUSES = frozenset({
    PaymentStatus.UNPAID,
    PaymentStatus.PARTIAL,
    PaymentStatus.OVERDUE,
    PaymentStatus.CONSOLIDATED,
})


class ConnectionState(str, enum.Enum):
    """Water connection lifecycle, owned by account management"""
    PENDING = "pending"
    ACTIVE = "active"
    REQUEST_FOR_DISCONNECTION = "request_for_disconnection"
    FOR_DISCONNECTION = "for_disconnection"
    SCHEDULED_FOR_DISCONNECTION = "scheduled_for_disconnection"
    DISCONNECTED = "disconnected"
    FOR_RECONNECTION = "for_reconnection"
    SCHEDULED_FOR_RECONNECTION = "scheduled_for_reconnection"


class RenderedStatus(str, enum.Enum):
    """Status badge shown for a bill across the portal"""
    PAID = "paid"
    PARTIAL = "partial"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"
    FOR_DISCONNECTION = "for_disconnection"
    SCHEDULED_FOR_DISCONNECTION = "scheduled_for_disconnection"
    DISCONNECTED = "disconnected"
    FOR_RECONNECTION = "for_reconnection"
    SCHEDULED_FOR_RECONNECTION = "scheduled_for_reconnection"
    PENDING = "pending"
    UNKNOWN = "unknown"


# Payments
class PaymentType(str, enum.Enum):
    """Full or partial settlement of a bill"""
    FULL = "full"
    PARTIAL = "partial"


class PaymentRecordStatus(str, enum.Enum):
    """Treasurer confirmation state of an applied payment"""
    PENDING = "pending"
    CONFIRMED = "confirmed"


class GatewayState(str, enum.Enum):
    """Checkout outcome reported by the payment provider"""
    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class WorkflowStep(str, enum.Enum):
    """Steps of the payment wizard"""
    REVIEWING_BILL = "reviewing_bill"
    SELECTING_PAYMENT_TYPE = "selecting_payment_type"
    SELECTING_METHOD = "selecting_method"
    AWAITING_GATEWAY = "awaiting_gateway"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class ReconcileOutcome(str, enum.Enum):
    """Result of resolving a pending checkout"""
    RESOLVED_SUCCESS = "resolved_success"
    RESOLVED_FAILURE = "resolved_failure"
    STILL_PENDING = "still_pending"
    EXPIRED = "expired"
    NO_PENDING = "no_pending"
