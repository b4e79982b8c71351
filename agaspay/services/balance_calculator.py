"""Balance & Overdue Calculator - pure aggregation over a connection's bills"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from agaspay.core.exceptions import NoBillFoundError, PaymentValidationError
from agaspay.models.enums import PaymentStatus, UNPAID_STATUSES
from agaspay.schemas.billing import Bill, BillingSummary
from agaspay.services.bill_normalizer import apply_payment, mark_settled
from agaspay.utils.money import ZERO, to_money


def is_unpaid(bill: Bill) -> bool:
    return bill.payment_status in UNPAID_STATUSES


def _earliest_key(bill: Bill) -> Tuple[date, Decimal, str]:
    # Same due date: the bigger balance matters more; id keeps it deterministic
    return (bill.due_date, -bill.balance, bill.id)


def order_by_urgency(bills: Sequence[Bill]) -> List[Bill]:
    """Unpaid bills, earliest due first."""
    return sorted((b for b in bills if is_unpaid(b)), key=_earliest_key)


def summarize(bills: Sequence[Bill], today: date) -> BillingSummary:
    """
    Aggregate one connection's bills as of ``today``.

    ``earliest_overdue_days`` is the number of days from today until the due
    date of the most urgent unpaid bill: negative once that bill is past due,
    ``None`` when nothing is unpaid.
    """
    unpaid = order_by_urgency(bills)
    per_bill_balance: Dict[str, Decimal] = {bill.id: bill.balance for bill in bills}

    # A single unpaid bill is reported straight from its own balance rather
    # than through the multi-bill sum.
    if len(unpaid) == 1:
        total_due = unpaid[0].balance
    elif unpaid:
        total_due = sum((bill.balance for bill in unpaid), ZERO)
    else:
        total_due = ZERO

    earliest = unpaid[0] if unpaid else None
    return BillingSummary(
        total_due=total_due,
        per_bill_balance=per_bill_balance,
        earliest_overdue_days=earliest.days_until_due(today) if earliest else None,
        earliest_bill_id=earliest.id if earliest else None,
        unpaid_count=len(unpaid),
        past_due_count=sum(1 for bill in unpaid if bill.due_date < today),
    )


def allocate_payment(
    bills: Sequence[Bill],
    target_bill_id: str,
    amount: Decimal,
) -> List[Tuple[Bill, Decimal]]:
    """
    Split a payment across unpaid bills.

    The target bill is paid first; any remainder goes to the connection's
    other unpaid bills, most urgent first. No bill ever receives more than
    its own balance.

    Returns:
        list of (updated bill, amount applied to it)

    Raises:
        NoBillFoundError: target bill is not among ``bills``
        PaymentValidationError: amount is not positive or exceeds everything owed
    """
    amount = to_money(amount)
    if amount <= 0:
        raise PaymentValidationError(f"Payment amount must be positive, got {amount}")

    target = next((bill for bill in bills if bill.id == target_bill_id), None)
    if target is None:
        raise NoBillFoundError(f"Bill {target_bill_id} not found")

    queue = [target] + [bill for bill in order_by_urgency(bills) if bill.id != target.id]
    owed = sum((bill.balance for bill in queue), ZERO)
    if amount > owed:
        raise PaymentValidationError(f"Payment of {amount} exceeds the outstanding balance {owed}")

    allocations: List[Tuple[Bill, Decimal]] = []
    remaining = amount
    for bill in queue:
        if remaining <= 0:
            break
        portion = min(remaining, bill.balance)
        if portion <= 0:
            continue
        allocations.append((apply_payment(bill, portion), portion))
        remaining -= portion
    return allocations


def settle_consolidated(bills: Sequence[Bill], paid_bill: Bill) -> List[Bill]:
    """
    Bills whose arrears were carried into ``paid_bill`` and are now settled.

    A bill's total includes the unpaid balance of every earlier bill
    (``previous_balance``); once it is fully paid, those earlier unpaid,
    partial or consolidated bills are paid off with it.
    """
    if paid_bill.payment_status != PaymentStatus.PAID or paid_bill.previous_balance <= 0:
        return []
    cutoff = paid_bill.generated_at or datetime.combine(paid_bill.due_date, datetime.min.time())
    settled = []
    for bill in bills:
        if bill.id == paid_bill.id or bill.connection_id != paid_bill.connection_id or not is_unpaid(bill):
            continue
        generated = bill.generated_at or datetime.combine(bill.due_date, datetime.min.time())
        if generated < cutoff:
            settled.append(mark_settled(bill))
    return settled
