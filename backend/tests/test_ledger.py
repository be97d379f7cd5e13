import uuid

import pytest
from sqlmodel import Session, select

from conftest import NOW, RecordingNotifier, booking_payload
from therapy_scheduler.errors import NotFoundError, NotificationError, ValidationError
from therapy_scheduler.models import LedgerEntryType, LedgerTransaction, Therapist
from therapy_scheduler.services.booking import BookingTransaction
from therapy_scheduler.services.ledger import SqlLedger


def test_top_up_then_booking_charges_the_fee(engine, providers, bookings, therapist_id):
    ledger = SqlLedger(engine)
    assert ledger.top_up(therapist_id, 10) == 10

    tx = BookingTransaction(providers, bookings, RecordingNotifier(), ledger, booking_fee=1.5, clock=lambda: NOW)
    booking_id = tx.execute(booking_payload(therapist_id)).booking_id

    with Session(engine) as s:
        assert s.get(Therapist, therapist_id).balance == pytest.approx(8.5)
        entries = s.exec(select(LedgerTransaction).order_by(LedgerTransaction.amount)).all()
    assert [(e.entry_type, e.amount) for e in entries] == [
        (LedgerEntryType.charge, 1.5),
        (LedgerEntryType.credit, 10),
    ]
    assert entries[0].booking_id == booking_id


def test_rolled_back_booking_is_not_charged(engine, providers, bookings, therapist_id):
    ledger = SqlLedger(engine)
    tx = BookingTransaction(providers, bookings, RecordingNotifier(fail=True), ledger,
                            compensation_backoff_seconds=0, clock=lambda: NOW)
    with pytest.raises(NotificationError):
        tx.execute(booking_payload(therapist_id))
    with Session(engine) as s:
        assert s.exec(select(LedgerTransaction)).all() == []


def test_balance_may_go_negative(engine, therapist_id):
    ledger = SqlLedger(engine)
    ledger.debit(therapist_id, 1.0, "Booking")
    with Session(engine) as s:
        assert s.get(Therapist, therapist_id).balance == -1.0


@pytest.mark.parametrize("amount", [0, -5])
def test_amount_must_be_positive(engine, therapist_id, amount):
    with pytest.raises(ValidationError):
        SqlLedger(engine).top_up(therapist_id, amount)


def test_unknown_therapist(engine):
    with pytest.raises(NotFoundError):
        SqlLedger(engine).top_up(str(uuid.uuid4()), 5)
