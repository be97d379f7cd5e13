from __future__ import annotations

from datetime import date
from typing import Iterable, List, Optional

from ..models import Booking, BookingStatus
from .ports import BookingRepository
from .timeutils import to_minutes, overlaps


def overlapping(bookings: Iterable[Booking], start_time: str, end_time: str,
                exclude_booking_id: Optional[str] = None) -> List[Booking]:
    """Bookings from ``bookings`` whose window overlaps [start_time, end_time)."""
    start, end = to_minutes(start_time), to_minutes(end_time)
    hits = []
    for b in bookings:
        if b.status == BookingStatus.cancelled:
            continue
        if exclude_booking_id is not None and b.id == exclude_booking_id:
            continue
        if overlaps(start, end, to_minutes(b.start_time), to_minutes(b.end_time)):
            hits.append(b)
    return hits


class ConflictDetector:
    """
    Answers whether a proposed window collides with an active booking.

    Reads every non-cancelled booking of the therapist on that date and
    compares in memory with half-open intervals, so a booking ending at
    10:00 never blocks one starting at 10:00.
    """

    def __init__(self, bookings: BookingRepository):
        self.bookings = bookings

    def find_conflicts(
        self,
        therapist_id: str,
        day: date,
        start_time: str,
        end_time: str,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        active = self.bookings.find_active_bookings(therapist_id, day)
        return overlapping(active, start_time, end_time, exclude_booking_id)

    def has_conflict(
        self,
        therapist_id: str,
        day: date,
        start_time: str,
        end_time: str,
        exclude_booking_id: Optional[str] = None,
    ) -> bool:
        return bool(self.find_conflicts(therapist_id, day, start_time, end_time, exclude_booking_id))
