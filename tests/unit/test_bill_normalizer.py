"""Unit tests for bill record normalization."""

from datetime import date, datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from agaspay.core.exceptions import MalformedBillError, PaymentValidationError
from agaspay.models.enums import PaymentStatus
from agaspay.schemas.billing import Bill
from agaspay.services.bill_normalizer import apply_payment, mark_settled, normalize, normalize_many


def _raw(**overrides):
    record = {
        "_id": "bill-1",
        "connection_id": "conn-1",
        "total_amount": 450,
        "status": "unpaid",
        "due_date": "2026-03-15",
        "previous_reading": 100,
        "present_reading": 118,
    }
    record.update(overrides)
    return record


def test_normalize_mongo_record():
    bill = normalize(_raw())
    assert bill.id == "bill-1"
    assert bill.total_amount == Decimal("450.00")
    assert bill.amount_paid == Decimal("0.00")
    assert bill.balance == Decimal("450.00")
    assert bill.payment_status == PaymentStatus.UNPAID
    assert bill.due_date == date(2026, 3, 15)
    assert bill.consumption == Decimal("18")
    assert bill.data_quality_flags == ()


def test_normalize_camel_case_aliases():
    bill = normalize({
        "id": "b-7",
        "connectionId": {"_id": "conn-9", "name": "Dela Cruz"},
        "totalAmount": "320.50",
        "amountPaid": "100.25",
        "paymentStatus": "partial",
        "dueDate": "2026-04-01T16:00:00.000Z",
        "reading": {"previousReading": 10, "presentReading": 22},
    })
    assert bill.connection_id == "conn-9"
    assert bill.balance == Decimal("220.25")
    assert bill.payment_status == PaymentStatus.PARTIAL
    # 16:00 UTC is local midnight of the next day in Manila
    assert bill.due_date == date(2026, 4, 2)
    assert bill.consumption == Decimal("12")


def test_explicit_balance_wins_over_amount_paid():
    bill = normalize(_raw(total_amount=500, amount_paid=100, balance=300, status="partial"))
    assert bill.amount_paid == Decimal("200.00")
    assert bill.balance == Decimal("300.00")
    assert "balance_mismatch" in bill.data_quality_flags


def test_paid_without_amounts_counts_as_fully_paid():
    bill = normalize(_raw(status="paid"))
    assert bill.amount_paid == bill.total_amount
    assert bill.balance == Decimal("0.00")
    assert bill.payment_status == PaymentStatus.PAID


def test_status_is_derived_from_amounts():
    bill = normalize(_raw(status="unpaid", amount_paid=450))
    assert bill.payment_status == PaymentStatus.PAID
    assert "status_mismatch" in bill.data_quality_flags

    bill = normalize(_raw(status="paid", amount_paid=50))
    assert bill.payment_status == PaymentStatus.PARTIAL


def test_overdue_and_consolidated_statuses_survive_when_nothing_paid():
    assert normalize(_raw(status="overdue")).payment_status == PaymentStatus.OVERDUE
    assert normalize(_raw(status="consolidated")).payment_status == PaymentStatus.CONSOLIDATED


def test_unknown_status_is_flagged():
    bill = normalize(_raw(status="waived"))
    assert bill.payment_status == PaymentStatus.UNPAID
    assert "unknown_status" in bill.data_quality_flags


def test_missing_readings_are_flagged_not_rejected():
    raw = _raw()
    del raw["present_reading"]
    bill = normalize(raw)
    assert bill.consumption is None
    assert "readings_missing" in bill.data_quality_flags


def test_float_amounts_do_not_pick_up_binary_noise():
    bill = normalize(_raw(total_amount=0.1 + 0.2, amount_paid=0.1, status="partial"))
    assert bill.total_amount == Decimal("0.30")
    assert bill.balance == Decimal("0.20")


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"total_amount": None, "amount": None}, "total_amount"),
        ({"total_amount": -5}, "total_amount"),
        ({"total_amount": "abc"}, "total_amount"),
        ({"due_date": None}, "due_date"),
        ({"due_date": "not a date"}, "due_date"),
        ({"balance": 900}, "balance"),
        ({"balance": -1}, "balance"),
        ({"amount_paid": 451}, "amount_paid"),
        ({"present_reading": 90}, "present_reading"),
        ({"connection_id": None}, "connection_id"),
    ],
)
def test_malformed_records_are_rejected(overrides, field):
    with pytest.raises(MalformedBillError) as exc_info:
        normalize(_raw(**overrides))
    assert exc_info.value.field == field
    assert exc_info.value.code == "MALFORMED_BILL"


def test_normalize_many_sets_aside_bad_records():
    bills, rejected = normalize_many([_raw(), _raw(_id="bill-2", total_amount=-1), _raw(_id="bill-3")])
    assert [b.id for b in bills] == ["bill-1", "bill-3"]
    assert len(rejected) == 1
    bill_id, exc = rejected[0]
    assert bill_id == "bill-2"
    assert isinstance(exc, MalformedBillError)


def test_generated_at_is_naive_utc():
    bill = normalize(_raw(created_at="2026-03-01T08:00:00+08:00"))
    assert bill.generated_at == datetime(2026, 3, 1, 0, 0)


def test_bill_rejects_status_that_contradicts_amounts():
    with pytest.raises(ValidationError):
        Bill(
            id="b", connection_id="c", due_date=date(2026, 1, 1),
            total_amount=Decimal("100.00"), amount_paid=Decimal("100.00"),
            payment_status=PaymentStatus.UNPAID,
        )
    with pytest.raises(ValidationError):
        Bill(
            id="b", connection_id="c", due_date=date(2026, 1, 1),
            total_amount=Decimal("100.00"), amount_paid=Decimal("0.00"),
            payment_status=PaymentStatus.PARTIAL,
        )


def test_apply_payment_moves_status_and_keeps_original():
    bill = normalize(_raw(total_amount=500))
    partly = apply_payment(bill, Decimal("200"))
    assert partly.payment_status == PaymentStatus.PARTIAL
    assert partly.balance == Decimal("300.00")
    assert bill.balance == Decimal("500.00")

    paid = apply_payment(partly, Decimal("300.00"))
    assert paid.payment_status == PaymentStatus.PAID
    assert paid.balance == Decimal("0.00")


@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1"), Decimal("500.01")])
def test_apply_payment_rejects_invalid_amounts(amount):
    bill = normalize(_raw(total_amount=500))
    with pytest.raises(PaymentValidationError):
        apply_payment(bill, amount)


def test_mark_settled():
    bill = normalize(_raw(status="consolidated"))
    settled = mark_settled(bill)
    assert settled.payment_status == PaymentStatus.PAID
    assert settled.balance == Decimal("0.00")
