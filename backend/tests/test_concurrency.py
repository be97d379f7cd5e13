import random
import threading
from itertools import combinations

from sqlmodel import Session, select

from conftest import NOW, RecordingLedger, RecordingNotifier, booking_payload
from therapy_scheduler.errors import ConflictError
from therapy_scheduler.models import Booking, BookingStatus
from therapy_scheduler.services.booking import BookingTransaction
from therapy_scheduler.services.repository import SqlBookingRepository, SqlProviderRepository
from therapy_scheduler.services.timeutils import times_overlap


def _race(engine, payloads):
    """Run one booking per payload, all released at the same moment."""
    barrier = threading.Barrier(len(payloads))
    outcomes = [None] * len(payloads)

    def worker(i, payload):
        # separate repositories per thread, same engine
        tx = BookingTransaction(
            SqlProviderRepository(engine), SqlBookingRepository(engine),
            RecordingNotifier(), RecordingLedger(), clock=lambda: NOW,
        )
        barrier.wait()
        try:
            outcomes[i] = tx.execute(payload)
        except ConflictError as exc:
            outcomes[i] = exc

    threads = [threading.Thread(target=worker, args=(i, p)) for i, p in enumerate(payloads)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    assert not any(t.is_alive() for t in threads)
    return outcomes


def _active(engine):
    with Session(engine) as s:
        return s.exec(select(Booking).where(Booking.status != BookingStatus.cancelled)).all()


def test_two_identical_requests_one_wins(engine, therapist_id):
    outcomes = _race(engine, [booking_payload(therapist_id, "10:00", "11:00")] * 2)

    conflicts = [o for o in outcomes if isinstance(o, ConflictError)]
    confirmed = [o for o in outcomes if not isinstance(o, ConflictError)]
    assert len(confirmed) == 1
    assert len(conflicts) == 1
    assert len(_active(engine)) == 1


def test_overlapping_but_different_windows_one_wins(engine, therapist_id):
    outcomes = _race(engine, [
        booking_payload(therapist_id, "10:00", "11:00"),
        booking_payload(therapist_id, "10:30", "11:30"),
    ])
    assert sum(isinstance(o, ConflictError) for o in outcomes) == 1
    assert len(_active(engine)) == 1


def test_many_writers_never_leave_overlapping_bookings(engine, therapist_id):
    rnd = random.Random(7)
    payloads = []
    for _ in range(12):
        start = rnd.randrange(9 * 60, 16 * 60, 15)
        length = rnd.choice([30, 45, 60, 90])
        payloads.append(booking_payload(
            therapist_id,
            f"{start // 60:02d}:{start % 60:02d}",
            f"{(start + length) // 60:02d}:{(start + length) % 60:02d}",
        ))

    outcomes = _race(engine, payloads)
    rows = _active(engine)

    assert len(rows) == sum(not isinstance(o, ConflictError) for o in outcomes)
    assert rows
    for a, b in combinations(rows, 2):
        assert not times_overlap(a.start_time, a.end_time, b.start_time, b.end_time), (a.id, b.id)
