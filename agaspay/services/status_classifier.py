"""Status Classifier - the one place a bill's status badge is decided"""

from datetime import date

from agaspay.config import settings
from agaspay.core.exceptions import BillingEngineError
from agaspay.core.logging import get_logger
from agaspay.models.enums import ConnectionState, PaymentStatus, RenderedStatus
from agaspay.schemas.billing import Bill, BillingSummary

logger = get_logger(__name__)

RECONNECTION_STATES = {
    ConnectionState.FOR_RECONNECTION: RenderedStatus.FOR_RECONNECTION,
    ConnectionState.SCHEDULED_FOR_RECONNECTION: RenderedStatus.SCHEDULED_FOR_RECONNECTION,
}


def classify(
    bill: Bill,
    connection_state: ConnectionState,
    summary: BillingSummary,
    today: date,
) -> RenderedStatus:
    """
    Map a bill and its connection's lifecycle state to a rendered status.

    The raw conditions overlap (a partly paid bill can sit on a connection
    marked for disconnection), so the checks run in a fixed order and the
    first match wins:

        1. reconnection states, then disconnected
        2. scheduled_for_disconnection
        3. paid
        4. partial
        5. for_disconnection
        6. overdue (this bill, or the earliest of several unpaid bills)
        7. due_soon (due within DUE_SOON_DAYS)
        8. pending
    """
    if connection_state in RECONNECTION_STATES:
        return RECONNECTION_STATES[connection_state]
    if connection_state == ConnectionState.DISCONNECTED:
        return RenderedStatus.DISCONNECTED
    if connection_state == ConnectionState.SCHEDULED_FOR_DISCONNECTION:
        return RenderedStatus.SCHEDULED_FOR_DISCONNECTION
    if bill.payment_status == PaymentStatus.PAID:
        return RenderedStatus.PAID
    if bill.payment_status == PaymentStatus.PARTIAL:
        return RenderedStatus.PARTIAL
    if connection_state == ConnectionState.FOR_DISCONNECTION:
        return RenderedStatus.FOR_DISCONNECTION

    days_until_due = bill.days_until_due(today)
    earliest_overdue = (
        summary.unpaid_count > 1
        and summary.earliest_overdue_days is not None
        and summary.earliest_overdue_days < 0
    )
    if days_until_due < 0 or earliest_overdue:
        return RenderedStatus.OVERDUE
    if 0 <= days_until_due <= settings.DUE_SOON_DAYS:
        return RenderedStatus.DUE_SOON
    return RenderedStatus.PENDING


def safe_classify(
    bill: Bill,
    connection_state: ConnectionState,
    summary: BillingSummary,
    today: date,
) -> RenderedStatus:
    """classify(), degrading to UNKNOWN so one bad record never blocks a list."""
    try:
        return classify(bill, connection_state, summary, today)
    except (BillingEngineError, ValueError, TypeError, AttributeError):
        logger.warning(
            "Could not classify bill %s", getattr(bill, "id", None),
            extra={"bill_id": getattr(bill, "id", None)},
            exc_info=True,
        )
        return RenderedStatus.UNKNOWN


def is_payment_offered(bill: Bill, connection_state: ConnectionState) -> bool:
    """
    Whether the portal should offer online payment for this bill.

    Nothing is offered for a settled bill. A disconnected connection must
    request reconnection first; once it is for (or scheduled for)
    reconnection, paying the arrears is exactly what is expected.
    """
    if bill.balance <= 0:
        return False
    return connection_state != ConnectionState.DISCONNECTED
