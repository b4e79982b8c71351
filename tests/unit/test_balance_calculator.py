"""Unit tests for balance aggregation and payment allocation."""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from agaspay.core.exceptions import NoBillFoundError, PaymentValidationError
from agaspay.models.enums import PaymentStatus
from agaspay.schemas.billing import Bill
from agaspay.services.balance_calculator import (
    allocate_payment,
    order_by_urgency,
    settle_consolidated,
    summarize,
)

TODAY = date(2026, 3, 10)


def make_bill(bill_id, total, due_offset=0, paid="0", status=None, **extra):
    total = Decimal(total)
    paid = Decimal(paid)
    if status is None:
        status = PaymentStatus.PAID if paid == total else PaymentStatus.PARTIAL if paid > 0 else PaymentStatus.UNPAID
    return Bill(
        id=bill_id,
        connection_id=extra.pop("connection_id", "conn-1"),
        due_date=TODAY + timedelta(days=due_offset),
        total_amount=total,
        amount_paid=paid,
        payment_status=status,
        **extra,
    )


def test_single_unpaid_bill_is_not_double_counted():
    summary = summarize([make_bill("b1", "500.00", due_offset=5)], TODAY)
    assert summary.total_due == Decimal("500.00")
    assert summary.unpaid_count == 1
    assert summary.earliest_bill_id == "b1"
    assert summary.earliest_overdue_days == 5


def test_multiple_unpaid_bills_are_summed():
    bills = [
        make_bill("b1", "300.00", due_offset=-30),
        make_bill("b2", "450.00", due_offset=2),
        make_bill("b3", "200.00", due_offset=-60, paid="200.00"),
    ]
    summary = summarize(bills, TODAY)
    assert summary.total_due == Decimal("750.00")
    assert summary.unpaid_count == 2
    assert summary.past_due_count == 1
    assert summary.earliest_bill_id == "b1"
    assert summary.earliest_overdue_days == -30
    assert summary.per_bill_balance == {
        "b1": Decimal("300.00"),
        "b2": Decimal("450.00"),
        "b3": Decimal("0.00"),
    }


def test_partial_bill_contributes_only_its_balance():
    bills = [make_bill("b1", "500.00", paid="200.00"), make_bill("b2", "100.00", due_offset=30)]
    assert summarize(bills, TODAY).total_due == Decimal("400.00")


def test_nothing_unpaid():
    summary = summarize([make_bill("b1", "500.00", paid="500.00")], TODAY)
    assert summary.total_due == Decimal("0.00")
    assert summary.unpaid_count == 0
    assert summary.earliest_overdue_days is None
    assert summary.earliest_bill_id is None


def test_empty_bill_list():
    summary = summarize([], TODAY)
    assert summary.total_due == Decimal("0.00")
    assert summary.per_bill_balance == {}


def test_same_due_date_prefers_larger_balance():
    bills = [make_bill("small", "100.00", due_offset=-3), make_bill("large", "300.00", due_offset=-3)]
    assert summarize(bills, TODAY).earliest_bill_id == "large"
    assert [b.id for b in order_by_urgency(bills)] == ["large", "small"]


def test_consolidated_bills_count_as_unpaid():
    bills = [
        make_bill("old", "300.00", due_offset=-40, status=PaymentStatus.CONSOLIDATED),
        make_bill("new", "500.00", due_offset=5, previous_balance=Decimal("300.00")),
    ]
    summary = summarize(bills, TODAY)
    assert summary.unpaid_count == 2
    assert summary.earliest_bill_id == "old"


def test_allocate_payment_to_target_only():
    bills = [make_bill("b1", "500.00"), make_bill("b2", "200.00", due_offset=-10)]
    allocations = allocate_payment(bills, "b1", Decimal("150"))
    assert len(allocations) == 1
    bill, portion = allocations[0]
    assert bill.id == "b1"
    assert portion == Decimal("150.00")
    assert bill.payment_status == PaymentStatus.PARTIAL
    assert bill.balance == Decimal("350.00")


def test_allocate_payment_spills_to_most_urgent_bill():
    bills = [
        make_bill("b1", "500.00"),
        make_bill("b2", "200.00", due_offset=10),
        make_bill("b3", "100.00", due_offset=-10),
    ]
    allocations = allocate_payment(bills, "b1", Decimal("550.00"))
    assert [(b.id, p) for b, p in allocations] == [
        ("b1", Decimal("500.00")),
        ("b3", Decimal("50.00")),
    ]
    assert allocations[0][0].payment_status == PaymentStatus.PAID
    assert allocations[1][0].payment_status == PaymentStatus.PARTIAL


def test_allocate_payment_never_exceeds_what_is_owed():
    bills = [make_bill("b1", "500.00"), make_bill("b2", "100.00")]
    with pytest.raises(PaymentValidationError):
        allocate_payment(bills, "b1", Decimal("600.01"))


def test_allocate_payment_unknown_bill():
    with pytest.raises(NoBillFoundError):
        allocate_payment([make_bill("b1", "500.00")], "nope", Decimal("10"))


def test_allocate_payment_rejects_zero():
    with pytest.raises(PaymentValidationError):
        allocate_payment([make_bill("b1", "500.00")], "b1", Decimal("0"))


def test_settle_consolidated_pays_off_earlier_arrears():
    old = make_bill(
        "old", "300.00", due_offset=-40, status=PaymentStatus.CONSOLIDATED,
        generated_at=datetime(2026, 1, 25),
    )
    other_connection = make_bill(
        "other", "80.00", due_offset=-40, connection_id="conn-2", generated_at=datetime(2026, 1, 25),
    )
    new = make_bill(
        "new", "800.00", paid="800.00", previous_balance=Decimal("300.00"),
        generated_at=datetime(2026, 2, 25),
    )
    settled = settle_consolidated([old, other_connection, new], new)
    assert [b.id for b in settled] == ["old"]
    assert settled[0].payment_status == PaymentStatus.PAID


def test_settle_consolidated_requires_full_payment_with_arrears():
    old = make_bill("old", "300.00", due_offset=-40, generated_at=datetime(2026, 1, 25))
    partly = make_bill(
        "new", "800.00", paid="500.00", previous_balance=Decimal("300.00"),
        generated_at=datetime(2026, 2, 25),
    )
    no_arrears = make_bill("new2", "500.00", paid="500.00", generated_at=datetime(2026, 2, 25))
    assert settle_consolidated([old, partly], partly) == []
    assert settle_consolidated([old, no_arrears], no_arrears) == []
