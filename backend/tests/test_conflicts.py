import uuid
from datetime import date

import pytest

from therapy_scheduler.errors import ValidationError
from therapy_scheduler.models import Booking, BookingStatus
from therapy_scheduler.services.conflicts import ConflictDetector

DAY = date(2030, 6, 3)
_counter = iter(range(1, 10_000))


def _store(bookings, therapist_id, start, end, day="2030-06-03", status=BookingStatus.confirmed):
    n = next(_counter)
    b = Booking(
        id=f"bkg_c{n}",
        therapist_id=therapist_id,
        appointment_date=day,
        start_time=start,
        end_time=end,
        status=status,
        cancellation_token=f"tok-c{n}",
        patient_name="Mara Koch",
        patient_email="mara@example.com",
    )
    bookings.insert_booking(b)
    return b


def test_no_bookings_never_conflicts(therapist_id, bookings):
    assert not ConflictDetector(bookings).has_conflict(therapist_id, DAY, "09:00", "10:00")


def test_adjacent_windows_do_not_conflict(therapist_id, bookings):
    _store(bookings, therapist_id, "09:00", "10:00")
    detector = ConflictDetector(bookings)
    assert not detector.has_conflict(therapist_id, DAY, "10:00", "11:00")
    assert not detector.has_conflict(therapist_id, DAY, "08:00", "09:00")


@pytest.mark.parametrize("existing,proposed", [
    (("09:00", "10:00"), ("09:00", "10:00")),  # identical
    (("08:00", "11:00"), ("09:00", "10:00")),  # existing contains proposed
    (("09:30", "09:45"), ("09:00", "10:00")),  # proposed contains existing
    (("09:00", "10:00"), ("09:59", "11:00")),  # partial overlap at the end
    (("09:00", "10:00"), ("08:00", "09:01")),  # partial overlap at the start
])
def test_overlapping_windows_conflict(therapist_id, bookings, existing, proposed):
    _store(bookings, therapist_id, *existing)
    assert ConflictDetector(bookings).has_conflict(therapist_id, DAY, *proposed)


def test_cancelled_bookings_never_block(therapist_id, bookings):
    _store(bookings, therapist_id, "09:00", "10:00", status=BookingStatus.cancelled)
    assert not ConflictDetector(bookings).has_conflict(therapist_id, DAY, "09:00", "10:00")


def test_completed_and_no_show_bookings_still_occupy(therapist_id, bookings):
    _store(bookings, therapist_id, "09:00", "10:00", status=BookingStatus.completed)
    _store(bookings, therapist_id, "12:00", "13:00", status=BookingStatus.no_show)
    detector = ConflictDetector(bookings)
    assert detector.has_conflict(therapist_id, DAY, "09:30", "10:30")
    assert detector.has_conflict(therapist_id, DAY, "12:00", "13:00")


def test_other_date_and_other_therapist_do_not_conflict(therapist_id, bookings):
    _store(bookings, therapist_id, "09:00", "10:00", day="2030-06-04")
    _store(bookings, str(uuid.uuid4()), "09:00", "10:00")
    assert not ConflictDetector(bookings).has_conflict(therapist_id, DAY, "09:00", "10:00")


def test_matches_both_therapist_id_encodings(therapist_id, bookings):
    hex_id = uuid.UUID(therapist_id).hex
    _store(bookings, hex_id, "09:00", "10:00")
    detector = ConflictDetector(bookings)
    assert detector.has_conflict(therapist_id, DAY, "09:30", "10:30")
    assert detector.has_conflict(hex_id, DAY, "09:30", "10:30")
    assert detector.has_conflict(therapist_id.upper(), DAY, "09:30", "10:30")


def test_find_conflicts_can_exclude_a_booking(therapist_id, bookings):
    own = _store(bookings, therapist_id, "09:00", "10:00")
    detector = ConflictDetector(bookings)
    assert [b.id for b in detector.find_conflicts(therapist_id, DAY, "09:30", "10:30")] == [own.id]
    assert detector.find_conflicts(therapist_id, DAY, "09:30", "10:30", exclude_booking_id=own.id) == []


def test_invalid_therapist_id_is_rejected(bookings):
    with pytest.raises(ValidationError):
        ConflictDetector(bookings).has_conflict("not-an-id", DAY, "09:00", "10:00")
