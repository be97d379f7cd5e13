from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from ..errors import ConflictError, InternalError, NotificationError, SchedulingError, ValidationError
from ..models import Booking, BookingStatus
from ..schemas import BookingRequest, parse_model
from .conflicts import ConflictDetector
from .ids import new_booking_id, new_cancellation_token
from .ports import BookingRepository, Ledger, NotificationSender, ProviderRepository
from .timeutils import combine

logger = logging.getLogger(__name__)


class BookingState(str, Enum):
    received = "received"
    conflict_checked = "conflict_checked"
    persisted = "persisted"
    side_effects_attempted = "side_effects_attempted"
    committed = "committed"
    rolled_back = "rolled_back"
    rejected = "rejected"


TERMINAL_STATES = {BookingState.committed, BookingState.rolled_back, BookingState.rejected}

# state -> states it may move to
TRANSITIONS = {
    BookingState.received: {BookingState.conflict_checked, BookingState.rejected},
    BookingState.conflict_checked: {BookingState.persisted, BookingState.rejected},
    BookingState.persisted: {BookingState.side_effects_attempted, BookingState.rolled_back},
    BookingState.side_effects_attempted: {BookingState.committed, BookingState.rolled_back},
}


@dataclass
class BookingAttempt:
    request: BookingRequest
    state: BookingState = BookingState.received
    history: List[BookingState] = field(default_factory=lambda: [BookingState.received])
    booking: Optional[Booking] = None

    def advance(self, state: BookingState) -> None:
        if state not in TRANSITIONS.get(self.state, set()):
            raise InternalError(f"Illegal booking transition {self.state.value} -> {state.value}")
        logger.debug("Booking attempt for therapist=%s %s: %s -> %s",
                     self.request.therapist_id, self.request.appointment_date, self.state.value, state.value)
        self.state = state
        self.history.append(state)


@dataclass(frozen=True)
class BookingConfirmation:
    booking_id: str
    cancellation_token: str
    booking: Booking
    history: Tuple[BookingState, ...]


class BookingTransaction:
    """
    One booking attempt, run as an explicit state machine:

        received -> conflict_checked -> persisted -> side_effects_attempted -> committed
                                                                           \\-> rolled_back

    The conflict check and the insert share one storage transaction that
    holds the therapist's write lock (``BookingRepository.serialized``), so
    two overlapping requests cannot both pass the check.

    Notification failure deletes the new booking and raises
    NotificationError. Ledger failure is logged and otherwise ignored.
    """

    def __init__(
        self,
        providers: ProviderRepository,
        bookings: BookingRepository,
        notifier: NotificationSender,
        ledger: Ledger,
        booking_fee: float = 1.0,
        compensation_attempts: int = 3,
        compensation_backoff_seconds: float = 0.2,
        clock: Callable[[], datetime] = datetime.now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.providers = providers
        self.bookings = bookings
        self.notifier = notifier
        self.ledger = ledger
        self.booking_fee = booking_fee
        self.compensation_attempts = max(1, compensation_attempts)
        self.compensation_backoff_seconds = compensation_backoff_seconds
        self.clock = clock
        self.sleep = sleep

    def execute(self, payload: Any) -> BookingConfirmation:
        attempt = BookingAttempt(request=self.receive(payload))
        try:
            schedule = self.providers.get_provider(attempt.request.therapist_id)
            self._check_and_persist(attempt)
            attempt.advance(BookingState.side_effects_attempted)
            self.notifier.notify(attempt.booking, schedule)
        except BaseException as exc:
            if attempt.booking is None:
                if isinstance(exc, SchedulingError):
                    attempt.advance(BookingState.rejected)
                raise
            # written, maybe committed: compensate on any failure or interruption before the
            # confirmation went out, so the slot is not held by a booking nobody was told about
            notifying = attempt.state == BookingState.side_effects_attempted
            rolled_back = self._roll_back(attempt)
            if not isinstance(exc, Exception):
                raise
            if not rolled_back:
                raise InternalError("Booking could not be completed and could not be rolled back") from exc
            if not notifying:
                raise
            logger.warning("Confirmation for booking %s failed: %s", attempt.booking.id, exc)
            raise NotificationError("Could not send the booking confirmation, please try again") from exc

        booking = attempt.booking
        self._debit(booking)
        attempt.advance(BookingState.committed)
        logger.info("Booking %s committed for therapist=%s %s %s-%s", booking.id, booking.therapist_id,
                    booking.appointment_date, booking.start_time, booking.end_time)
        return BookingConfirmation(
            booking_id=booking.id,
            cancellation_token=booking.cancellation_token,
            booking=booking,
            history=tuple(attempt.history),
        )

    def receive(self, payload: Any) -> BookingRequest:
        """Shape check plus the clock-dependent rules (no past dates, no start already passed)."""
        request = parse_model(BookingRequest, payload, "Invalid booking request")
        now = self.clock()
        day = request.day
        if day < now.date():
            raise ValidationError("Invalid booking request",
                                  ["appointment_date: cannot book appointments in the past"])
        if day == now.date() and combine(day, request.start_time) < now:
            raise ValidationError("Invalid booking request",
                                  ["start_time: this time has already passed today"])
        return request

    def _check_and_persist(self, attempt: BookingAttempt) -> None:
        req = attempt.request
        booking = Booking(
            id=new_booking_id(),
            therapist_id=req.therapist_id,
            appointment_date=req.appointment_date,
            start_time=req.start_time,
            end_time=req.end_time,
            status=BookingStatus.confirmed,
            cancellation_token=new_cancellation_token(),
            patient_name=req.patient_name,
            patient_email=str(req.patient_email),
            patient_phone=req.patient_phone,
            reason=req.reason,
            notes=req.notes,
            locale=req.locale,
        )

        with self.bookings.serialized(req.therapist_id) as locked:
            detector = ConflictDetector(locked)
            if detector.has_conflict(req.therapist_id, req.day, req.start_time, req.end_time):
                logger.info("Booking conflict for therapist=%s %s %s-%s",
                            req.therapist_id, req.appointment_date, req.start_time, req.end_time)
                raise ConflictError("Time slot is already booked")
            attempt.advance(BookingState.conflict_checked)
            locked.insert_booking(booking)
            # set before the commit so a failure from here on is compensated
            attempt.booking = booking
            attempt.advance(BookingState.persisted)

    def _roll_back(self, attempt: BookingAttempt) -> bool:
        booking = attempt.booking
        for n in range(1, self.compensation_attempts + 1):
            try:
                self.bookings.delete_booking(booking.id)
            except Exception:
                logger.warning("Compensating delete of booking %s failed (attempt %d/%d)",
                               booking.id, n, self.compensation_attempts, exc_info=True)
                if n < self.compensation_attempts:
                    self.sleep(self.compensation_backoff_seconds * n)
                continue
            attempt.advance(BookingState.rolled_back)
            logger.info("Booking %s rolled back", booking.id)
            return True

        logger.critical(
            "Booking %s for therapist=%s %s %s-%s could not be rolled back; "
            "the slot stays occupied without a confirmation and needs manual cleanup",
            booking.id, booking.therapist_id, booking.appointment_date, booking.start_time, booking.end_time,
        )
        return False

    def _debit(self, booking: Booking) -> None:
        # ledger failures never fail the booking; they are reconciled out of band
        try:
            self.ledger.debit(
                booking.therapist_id,
                self.booking_fee,
                f"Booking {booking.appointment_date} {booking.start_time}-{booking.end_time}",
                booking_id=booking.id,
            )
        except Exception:
            logger.exception("Ledger debit failed for booking %s (therapist=%s)", booking.id, booking.therapist_id)
