"""Payment Ledger - bills as the engine knows them

The billing backend learns about checkout payments through its own webhook,
which can lag behind reconciliation. Payments recorded here that the
backend does not show yet are laid over its bills so a settled bill never
reads as owed (and payable) again.

A record applied by the engine keeps ``backend_paid``, the bill's
amount_paid on the backend before the payment. Growth of the backend's
amount_paid past that baseline counts as the backend having caught up.
"""

from collections import defaultdict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from agaspay.core.exceptions import MalformedBillError
from agaspay.models.enums import PaymentStatus
from agaspay.models.payment import PaymentRecord
from agaspay.schemas.billing import Bill
from agaspay.services.balance_calculator import is_unpaid, settle_consolidated
from agaspay.services.bill_normalizer import apply_payment, normalize_many
from agaspay.services.billing_api import BillingApiClient
from agaspay.utils.money import ZERO

Rejected = List[Tuple[Optional[str], MalformedBillError]]


async def fetch_backend_bills(api: BillingApiClient, connection_id: str) -> Tuple[List[Bill], Rejected]:
    """Normalized bills of one connection exactly as the backend reports them."""
    raw_bills = await api.get_bills(connection_id)
    bills, rejected = normalize_many(raw_bills)
    return [bill for bill in bills if bill.connection_id == connection_id], rejected


async def backend_amount_paid(api: BillingApiClient, connection_id: str, bill_id: str) -> Optional[Decimal]:
    """The backend's amount_paid for one bill, None when it does not list the bill."""
    bills, _ = await fetch_backend_bills(api, connection_id)
    bill = next((bill for bill in bills if bill.id == bill_id), None)
    return bill.amount_paid if bill is not None else None


async def unreflected_records(db: AsyncSession, connection_id: str) -> Sequence[PaymentRecord]:
    result = await db.execute(
        select(PaymentRecord).where(
            PaymentRecord.connection_id == connection_id,
            PaymentRecord.backend_paid.is_not(None),
        )
    )
    return result.scalars().all()


def overlay_recorded_payments(bills: Sequence[Bill], records: Sequence[PaymentRecord]) -> List[Bill]:
    """
    Apply the part of each bill's recorded payments the backend does not show yet.

    Bills fully paid this way also settle the consolidated bills whose
    arrears they carried.
    """
    by_bill: Dict[str, List[PaymentRecord]] = defaultdict(list)
    for record in records:
        if record.backend_paid is not None:
            by_bill[record.bill_id].append(record)

    overlaid: List[Bill] = []
    newly_paid: List[Bill] = []
    for bill in bills:
        pending = by_bill.get(bill.id)
        if not pending or not is_unpaid(bill):
            overlaid.append(bill)
            continue
        recorded = sum((record.amount for record in pending), ZERO)
        reflected = max(ZERO, bill.amount_paid - min(record.backend_paid for record in pending))
        outstanding = min(recorded - reflected, bill.balance)
        if outstanding <= 0:
            overlaid.append(bill)
            continue
        updated = apply_payment(bill, outstanding)
        overlaid.append(updated)
        if updated.payment_status == PaymentStatus.PAID:
            newly_paid.append(updated)

    for paid in newly_paid:
        settled = {bill.id: bill for bill in settle_consolidated(overlaid, paid)}
        overlaid = [settled.get(bill.id, bill) for bill in overlaid]
    return overlaid


async def load_connection_bills(
    api: BillingApiClient,
    db: AsyncSession,
    connection_id: str,
) -> Tuple[List[Bill], Rejected]:
    """Backend bills of a connection with recorded but unreflected payments applied."""
    bills, rejected = await fetch_backend_bills(api, connection_id)
    records = await unreflected_records(db, connection_id)
    if records:
        bills = overlay_recorded_payments(bills, records)
    return bills, rejected
