from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, List, Optional

from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Booking, BookingStatus
from ..schemas import RescheduleRequest
from .conflicts import ConflictDetector
from .ids import canonical_provider_id
from .repository import SqlBookingRepository
from .timeutils import combine, parse_date

logger = logging.getLogger(__name__)

# the only statuses a therapist may set by hand, and only on a confirmed booking
THERAPIST_SETTABLE = {BookingStatus.completed, BookingStatus.no_show}

LIST_DEFAULT_LIMIT = 100
LIST_MAX_LIMIT = 1000
LIST_DAYS_BACK = 90
LIST_DAYS_AHEAD = 180


def _owned(booking: Optional[Booking], therapist_id: str) -> bool:
    return booking is not None and canonical_provider_id(booking.therapist_id) == canonical_provider_id(therapist_id)


@dataclass
class BookingPage:
    bookings: List[Booking]
    status: Optional[BookingStatus]
    start_date: date
    end_date: date
    limit: int


class BookingLifecycle:
    """
    Changes to bookings after creation: cancellation, status updates, reschedules.

    Every write runs inside ``bookings.serialized()`` for the owning
    therapist, the same lock the booking transaction takes, and re-reads the
    booking there before changing it.
    """

    def __init__(self, bookings: SqlBookingRepository, clock: Callable[[], datetime] = datetime.now):
        self.bookings = bookings
        self.clock = clock

    def preview_cancellation(self, token: str) -> Booking:
        """The booking a cancellation link points at, without changing it."""
        if not token:
            raise ValidationError("Cancellation token is required")
        booking = self.bookings.find_by_token(token)
        if not booking:
            raise NotFoundError("Invalid or expired cancellation token")
        return booking

    def cancel_by_token(self, token: str) -> Booking:
        found = self.preview_cancellation(token)
        with self.bookings.serialized(found.therapist_id) as locked:
            booking = locked.get_booking(found.id)
            if booking is None or booking.status == BookingStatus.cancelled:
                raise NotFoundError("Invalid or expired cancellation token")
            self._cancel(locked, booking, "patient")
        logger.info("Booking %s cancelled by patient", booking.id)
        return booking

    def cancel_by_id(self, therapist_id: str, booking_id: str) -> Booking:
        with self.bookings.serialized(therapist_id) as locked:
            booking = locked.get_booking(booking_id)
            if not _owned(booking, therapist_id) or booking.status == BookingStatus.cancelled:
                raise NotFoundError("Booking not found, access denied, or already cancelled")
            self._cancel(locked, booking, "therapist")
        logger.info("Booking %s cancelled by therapist=%s", booking.id, booking.therapist_id)
        return booking

    @staticmethod
    def _cancel(locked: SqlBookingRepository, booking: Booking, by: str) -> None:
        previous = booking.status
        booking.status = BookingStatus.cancelled
        locked.save(booking, "booking_cancelled", {"previous_status": previous.value, "by": by})

    def update_booking(
        self,
        therapist_id: str,
        booking_id: str,
        status: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        new_status = None
        if status is not None:
            try:
                new_status = BookingStatus(status)
            except ValueError:
                new_status = None
            if new_status not in THERAPIST_SETTABLE:
                raise ValidationError("Invalid status", ["status: only completed and no_show may be set"])

        with self.bookings.serialized(therapist_id) as locked:
            booking = locked.get_booking(booking_id)
            if not _owned(booking, therapist_id):
                raise NotFoundError("Booking not found or access denied")
            if new_status is not None and booking.status != BookingStatus.confirmed:
                # a cancelled booking must never become active again
                raise ValidationError("Invalid status transition", [
                    f"status: a {booking.status.value} booking cannot be marked {new_status.value}",
                ])

            payload = {}
            if new_status is not None:
                payload["status"] = new_status.value
                booking.status = new_status
            if notes is not None:
                payload["notes_changed"] = True
                booking.notes = notes
            locked.save(booking, "booking_status_changed", payload)
        return booking

    def reschedule(self, therapist_id: str, booking_id: str, request: RescheduleRequest) -> Booking:
        now = self.clock()
        day = request.day
        if day < now.date() or combine(day, request.start_time) < now:
            raise ValidationError("Invalid reschedule request", ["appointment_date: cannot reschedule into the past"])

        with self.bookings.serialized(therapist_id) as locked:
            booking = locked.get_booking(booking_id)
            if not _owned(booking, therapist_id) or booking.status != BookingStatus.confirmed:
                raise NotFoundError("Booking not found, access denied, or not in confirmed status")

            detector = ConflictDetector(locked)
            if detector.has_conflict(therapist_id, day, request.start_time, request.end_time,
                                     exclude_booking_id=booking.id):
                raise ConflictError("New appointment time conflicts with an existing booking")

            payload = {
                "from": f"{booking.appointment_date} {booking.start_time}-{booking.end_time}",
                "to": f"{request.appointment_date} {request.start_time}-{request.end_time}",
            }
            booking.appointment_date = request.appointment_date
            booking.start_time = request.start_time
            booking.end_time = request.end_time
            locked.save(booking, "booking_rescheduled", payload)

        logger.info("Booking %s rescheduled for therapist=%s", booking.id, booking.therapist_id)
        return booking

    def list_bookings(
        self,
        therapist_id: str,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> BookingPage:
        """
        A therapist's bookings, newest first.

        Without dates the window runs from 90 days back to 180 days ahead.
        ``limit`` defaults to 100 and is capped at 1000.
        """
        problems = []
        wanted = None
        if status:
            try:
                wanted = BookingStatus(status)
            except ValueError:
                names = ", ".join(s.value for s in BookingStatus)
                problems.append(f"status: must be one of {names}")

        today = self.clock().date()
        bounds = {}
        for name, value, default in (
            ("start_date", start_date, today - timedelta(days=LIST_DAYS_BACK)),
            ("end_date", end_date, today + timedelta(days=LIST_DAYS_AHEAD)),
        ):
            try:
                bounds[name] = parse_date(value) if value else default
            except ValidationError as exc:
                problems.append(f"{name}: {exc.message}")

        if limit is None:
            limit = LIST_DEFAULT_LIMIT
        if limit < 1:
            problems.append("limit: must be a positive number")
        if problems:
            raise ValidationError("Invalid booking filters", problems)

        limit = min(limit, LIST_MAX_LIMIT)
        therapist_id = canonical_provider_id(therapist_id)
        start, end = bounds["start_date"], bounds["end_date"]
        rows = self.bookings.list_bookings(therapist_id, start, end, status=wanted, limit=limit)
        return BookingPage(bookings=rows, status=wanted, start_date=start, end_date=end, limit=limit)
