"""Unit tests for the bill status classifier."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from agaspay.models.enums import ConnectionState, PaymentStatus, RenderedStatus
from agaspay.schemas.billing import Bill
from agaspay.services.balance_calculator import summarize
from agaspay.services.status_classifier import classify, is_payment_offered, safe_classify

TODAY = date(2026, 3, 10)


def make_bill(bill_id="b1", total="450.00", due_offset=10, paid="0"):
    total, paid = Decimal(total), Decimal(paid)
    status = PaymentStatus.PAID if paid == total else PaymentStatus.PARTIAL if paid > 0 else PaymentStatus.UNPAID
    return Bill(
        id=bill_id,
        connection_id="conn-1",
        due_date=TODAY + timedelta(days=due_offset),
        total_amount=total,
        amount_paid=paid,
        payment_status=status,
    )


def status_of(bill, state=ConnectionState.ACTIVE, others=()):
    bills = [bill, *others]
    return classify(bill, state, summarize(bills, TODAY), TODAY)


@pytest.mark.parametrize(
    "state, expected",
    [
        (ConnectionState.FOR_RECONNECTION, RenderedStatus.FOR_RECONNECTION),
        (ConnectionState.SCHEDULED_FOR_RECONNECTION, RenderedStatus.SCHEDULED_FOR_RECONNECTION),
        (ConnectionState.DISCONNECTED, RenderedStatus.DISCONNECTED),
        (ConnectionState.SCHEDULED_FOR_DISCONNECTION, RenderedStatus.SCHEDULED_FOR_DISCONNECTION),
    ],
)
def test_connection_lifecycle_overrides_bill_state(state, expected):
    assert status_of(make_bill(paid="450.00"), state) == expected
    assert status_of(make_bill(due_offset=-20), state) == expected


def test_paid_bill():
    assert status_of(make_bill(paid="450.00", due_offset=-20)) == RenderedStatus.PAID


def test_partial_beats_for_disconnection():
    bill = make_bill(paid="100.00", due_offset=-20)
    assert status_of(bill, ConnectionState.FOR_DISCONNECTION) == RenderedStatus.PARTIAL


def test_for_disconnection_beats_overdue():
    bill = make_bill(due_offset=-20)
    assert status_of(bill, ConnectionState.FOR_DISCONNECTION) == RenderedStatus.FOR_DISCONNECTION


def test_overdue_when_past_due():
    assert status_of(make_bill(due_offset=-1)) == RenderedStatus.OVERDUE


def test_overdue_when_an_earlier_bill_is_past_due():
    current = make_bill("current", due_offset=10)
    old = make_bill("old", due_offset=-30)
    assert status_of(current, others=[old]) == RenderedStatus.OVERDUE


@pytest.mark.parametrize("offset", [0, 1, 3])
def test_due_soon(offset):
    assert status_of(make_bill(due_offset=offset)) == RenderedStatus.DUE_SOON


def test_pending_when_due_later():
    assert status_of(make_bill(due_offset=4)) == RenderedStatus.PENDING


@pytest.mark.parametrize("state", [ConnectionState.ACTIVE, ConnectionState.PENDING, ConnectionState.REQUEST_FOR_DISCONNECTION])
def test_ordinary_states_fall_through_to_bill_state(state):
    assert status_of(make_bill(due_offset=-5), state) == RenderedStatus.OVERDUE


def test_safe_classify_degrades_to_unknown():
    summary = summarize([], TODAY)
    assert safe_classify(None, ConnectionState.ACTIVE, summary, TODAY) == RenderedStatus.UNKNOWN


def test_payment_offered():
    unpaid = make_bill()
    assert is_payment_offered(unpaid, ConnectionState.ACTIVE)
    assert is_payment_offered(unpaid, ConnectionState.FOR_RECONNECTION)
    assert is_payment_offered(unpaid, ConnectionState.FOR_DISCONNECTION)
    assert not is_payment_offered(unpaid, ConnectionState.DISCONNECTED)
    assert not is_payment_offered(make_bill(paid="450.00"), ConnectionState.ACTIVE)
