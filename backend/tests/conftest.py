from datetime import datetime
from typing import List

import pytest
from sqlmodel import Session

from therapy_scheduler.config import Settings
from therapy_scheduler.db import create_db_and_tables, create_db_engine
from therapy_scheduler.models import Booking
from therapy_scheduler.schemas import AvailabilityRuleIn
from therapy_scheduler.services.booking import BookingTransaction
from therapy_scheduler.services.repository import SqlBookingRepository, SqlProviderRepository
from therapy_scheduler.services.schedule import create_therapist, replace_weekly_availability

# Monday 2030-06-03, 08:00 local
NOW = datetime(2030, 6, 3, 8, 0)
MONDAY = "2030-06-03"
TUESDAY = "2030-06-04"
THERAPIST_ID = "3f2b8c1e-5d4a-4e6f-9a7b-1c2d3e4f5a6b"


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[Booking] = []

    def notify(self, booking, schedule):
        if self.fail:
            raise RuntimeError("mail provider unavailable")
        self.sent.append(booking)


class RecordingLedger:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.debits = []

    def debit(self, therapist_id, amount, reason, booking_id=None):
        if self.fail:
            raise RuntimeError("ledger offline")
        self.debits.append((therapist_id, amount, booking_id))


def make_settings(tmp_path, **overrides) -> Settings:
    values = {"database_url": f"sqlite:///{tmp_path / 'test.db'}", "compensation_backoff_seconds": 0}
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def therapist_id(engine):
    """Therapist working Mondays 09:00-17:00 (five 90-minute slots, 30 minutes unused)."""
    with Session(engine) as session:
        create_therapist(session, "Dr. Lena Brandt", "lena@example.com", "Physiotherapy", therapist_id=THERAPIST_ID)
        replace_weekly_availability(session, THERAPIST_ID, [
            AvailabilityRuleIn(day_of_week=1, start_time="09:00", end_time="17:00"),
        ])
    return THERAPIST_ID


@pytest.fixture
def providers(engine):
    return SqlProviderRepository(engine)


@pytest.fixture
def bookings(engine):
    return SqlBookingRepository(engine)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def ledger():
    return RecordingLedger()


@pytest.fixture
def transaction(providers, bookings, notifier, ledger):
    return BookingTransaction(providers, bookings, notifier, ledger, compensation_backoff_seconds=0, clock=lambda: NOW)


def booking_payload(therapist_id, start="10:00", end="11:00", day=MONDAY, **extra):
    payload = {
        "therapist_id": therapist_id,
        "patient_name": "Jonas Weber",
        "patient_email": "jonas@example.com",
        "appointment_date": day,
        "start_time": start,
        "end_time": end,
    }
    payload.update(extra)
    return payload
