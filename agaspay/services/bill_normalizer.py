"""Bill Record Normalizer

The billing backend has shipped bill records in several shapes over time
(Mongo ``_id``/``status`` documents, camelCase portal payloads, records with
or without a precomputed balance). This module is the only place that knows
about those aliases; everything downstream works with ``Bill``.

Amount resolution order:
    1. an explicit ``balance`` wins and implies ``amount_paid = total - balance``
    2. otherwise ``amount_paid`` as given
    3. otherwise 0, except that a record marked ``paid`` with neither field
       was settled through arrears consolidation and counts as fully paid
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, List, Mapping, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from pydantic import ValidationError

from agaspay.config import settings
from agaspay.core.exceptions import MalformedBillError, PaymentValidationError
from agaspay.core.logging import get_logger
from agaspay.models.enums import PaymentStatus
from agaspay.schemas.billing import Bill
from agaspay.utils.money import ZERO, to_money

logger = get_logger(__name__)

ID_KEYS = ("id", "_id", "bill_id")
CONNECTION_KEYS = ("connection_id", "connectionId")
STATUS_KEYS = ("payment_status", "status", "paymentStatus")
TOTAL_KEYS = ("total_amount", "totalAmount", "amount")
PAID_KEYS = ("amount_paid", "amountPaid")
BALANCE_KEYS = ("balance",)
DUE_DATE_KEYS = ("due_date", "dueDate")
PERIOD_START_KEYS = ("period_start", "periodStart")
PERIOD_END_KEYS = ("period_end", "periodEnd")
GENERATED_KEYS = ("generated_at", "generatedAt", "created_at", "createdAt")
PREVIOUS_READING_KEYS = ("previous_reading", "previousReading")
PRESENT_READING_KEYS = ("present_reading", "presentReading", "current_reading", "currentReading")
PREVIOUS_BALANCE_KEYS = ("previous_balance", "previousBalance")
CURRENT_CHARGES_KEYS = ("current_charges", "currentCharges")


def _first(raw: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_id(value: Any) -> Optional[str]:
    # Populated Mongo references arrive as nested documents
    if isinstance(value, Mapping):
        value = value.get("_id") or value.get("id")
    if value is None:
        return None
    return str(value)


def _as_date(value: Any) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        return value
    elif isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            return date.fromisoformat(text)
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported date value {value!r}")
    # Backend stores due dates as UTC instants of local midnight
    if moment.tzinfo is not None:
        moment = moment.astimezone(ZoneInfo(settings.PORTAL_TIMEZONE))
    return moment.date()


def _as_datetime(value: Any) -> Optional[datetime]:
    """Naive UTC, so bills from different sources compare cleanly."""
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _as_status(value: Any, flags: List[str]) -> Optional[PaymentStatus]:
    if value is None:
        return None
    try:
        return PaymentStatus(str(value).strip().lower())
    except ValueError:
        flags.append("unknown_status")
        return None


def _readings(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    nested = raw.get("reading") or raw.get("reading_id")
    if isinstance(nested, Mapping) and _first(nested, PRESENT_READING_KEYS) is not None:
        return nested
    return raw


def _derive_status(raw_status: Optional[PaymentStatus], total: Decimal, paid: Decimal) -> PaymentStatus:
    if paid == total:
        return PaymentStatus.PAID
    if paid > 0:
        return PaymentStatus.PARTIAL
    if raw_status in (PaymentStatus.OVERDUE, PaymentStatus.CONSOLIDATED):
        return raw_status
    return PaymentStatus.UNPAID


def normalize(raw: Mapping[str, Any]) -> Bill:
    """
    Turn one raw bill record into a ``Bill``.

    Raises:
        MalformedBillError: missing/negative total, missing due date, balance
            outside [0, total], or a present reading below the previous one
    """
    bill_id = _as_id(_first(raw, ID_KEYS))
    if bill_id is None:
        raise MalformedBillError("Bill record has no id", field="id")

    connection_id = _as_id(_first(raw, CONNECTION_KEYS))
    if connection_id is None:
        raise MalformedBillError("Bill has no connection", bill_id=bill_id, field="connection_id")

    flags: List[str] = []

    raw_total = _first(raw, TOTAL_KEYS)
    try:
        total = to_money(raw_total)
    except ValueError:
        raise MalformedBillError(f"Bill {bill_id} has no usable total_amount", bill_id=bill_id, field="total_amount")
    if total < 0:
        raise MalformedBillError(f"Bill {bill_id} has negative total_amount {total}", bill_id=bill_id, field="total_amount")

    raw_status = _as_status(_first(raw, STATUS_KEYS), flags)
    raw_paid = _first(raw, PAID_KEYS)
    raw_balance = _first(raw, BALANCE_KEYS)

    try:
        paid = to_money(raw_paid) if raw_paid is not None else None
        balance = to_money(raw_balance) if raw_balance is not None else None
    except ValueError:
        raise MalformedBillError(f"Bill {bill_id} has non-numeric payment amounts", bill_id=bill_id, field="amount_paid")

    if balance is not None:
        if balance < 0 or balance > total:
            raise MalformedBillError(
                f"Bill {bill_id} balance {balance} outside [0, {total}]", bill_id=bill_id, field="balance"
            )
        if paid is not None and paid != total - balance:
            flags.append("balance_mismatch")
        paid = total - balance
    elif paid is None:
        paid = total if raw_status == PaymentStatus.PAID else ZERO

    if paid < 0 or paid > total:
        raise MalformedBillError(
            f"Bill {bill_id} amount_paid {paid} outside [0, {total}]", bill_id=bill_id, field="amount_paid"
        )

    status = _derive_status(raw_status, total, paid)
    if raw_status is not None and raw_status != status:
        flags.append("status_mismatch")

    try:
        due_date = _as_date(_first(raw, DUE_DATE_KEYS))
        period_start = _as_date(_first(raw, PERIOD_START_KEYS))
        period_end = _as_date(_first(raw, PERIOD_END_KEYS))
        generated_at = _as_datetime(_first(raw, GENERATED_KEYS))
    except ValueError:
        raise MalformedBillError(f"Bill {bill_id} has an unparseable date", bill_id=bill_id, field="due_date")
    if due_date is None:
        raise MalformedBillError(f"Bill {bill_id} has no due date", bill_id=bill_id, field="due_date")

    reading_source = _readings(raw)
    try:
        previous_reading = _first(reading_source, PREVIOUS_READING_KEYS)
        present_reading = _first(reading_source, PRESENT_READING_KEYS)
        previous_reading = Decimal(str(previous_reading)) if previous_reading is not None else None
        present_reading = Decimal(str(present_reading)) if present_reading is not None else None
        previous_balance = to_money(_first(raw, PREVIOUS_BALANCE_KEYS) or 0)
        current_charges = _first(raw, CURRENT_CHARGES_KEYS)
        current_charges = to_money(current_charges) if current_charges is not None else None
    except (ArithmeticError, ValueError):
        raise MalformedBillError(f"Bill {bill_id} has non-numeric readings", bill_id=bill_id, field="present_reading")

    if previous_reading is None or present_reading is None:
        flags.append("readings_missing")
    elif present_reading < previous_reading:
        raise MalformedBillError(
            f"Bill {bill_id} present reading {present_reading} is below previous reading {previous_reading}",
            bill_id=bill_id,
            field="present_reading",
        )

    try:
        return Bill(
            id=bill_id,
            connection_id=connection_id,
            due_date=due_date,
            period_start=period_start,
            period_end=period_end,
            generated_at=generated_at,
            previous_reading=previous_reading,
            present_reading=present_reading,
            previous_balance=max(previous_balance, ZERO),
            current_charges=current_charges,
            total_amount=total,
            amount_paid=paid,
            payment_status=status,
            data_quality_flags=tuple(flags),
        )
    except ValidationError as exc:
        raise MalformedBillError(f"Bill {bill_id} failed validation: {exc}", bill_id=bill_id)


def normalize_many(raw_bills: Sequence[Mapping[str, Any]]) -> Tuple[List[Bill], List[Tuple[Optional[str], MalformedBillError]]]:
    """
    Normalize a list of records, setting aside the ones that fail.

    Returns:
        (bills, rejected) where rejected is a list of (raw_id, MalformedBillError)
    """
    bills: List[Bill] = []
    rejected = []
    for raw in raw_bills:
        try:
            bill = normalize(raw)
        except MalformedBillError as exc:
            logger.warning(
                "Skipping malformed bill record: %s",
                exc.message,
                extra={"bill_id": exc.bill_id, "field": exc.field},
            )
            rejected.append((exc.bill_id or _as_id(_first(raw, ID_KEYS)), exc))
            continue
        if bill.data_quality_flags:
            logger.info(
                "Bill %s normalized with data-quality flags %s",
                bill.id,
                ",".join(bill.data_quality_flags),
                extra={"bill_id": bill.id, "connection_id": bill.connection_id},
            )
        bills.append(bill)
    return bills, rejected


def apply_payment(bill: Bill, amount: Decimal) -> Bill:
    """
    Return a copy of ``bill`` with ``amount`` added to what has been paid.

    Raises:
        PaymentValidationError: amount is not positive or exceeds the balance
    """
    amount = to_money(amount)
    if amount <= 0:
        raise PaymentValidationError(f"Payment amount must be positive, got {amount}")
    if amount > bill.balance:
        raise PaymentValidationError(
            f"Payment of {amount} exceeds the remaining balance {bill.balance} of bill {bill.id}"
        )
    new_paid = bill.amount_paid + amount
    status = PaymentStatus.PAID if new_paid == bill.total_amount else PaymentStatus.PARTIAL
    return bill.model_copy(update={"amount_paid": new_paid, "payment_status": status})


def mark_settled(bill: Bill) -> Bill:
    """Copy of ``bill`` fully paid off, used when its arrears were paid through a later bill."""
    return bill.model_copy(update={"amount_paid": bill.total_amount, "payment_status": PaymentStatus.PAID})
