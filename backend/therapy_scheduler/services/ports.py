from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import ContextManager, List, Protocol

from ..models import Booking


@dataclass(frozen=True)
class Rule:
    day_of_week: int  # 0=Sun ... 6=Sat
    start_time: str
    end_time: str


@dataclass(frozen=True)
class Blackout:
    from_date: str
    to_date: str
    start_time: str
    end_time: str


@dataclass(frozen=True)
class ProviderSchedule:
    therapist_id: str
    name: str
    email: str
    rules: List[Rule] = field(default_factory=list)
    blackouts: List[Blackout] = field(default_factory=list)


class ProviderRepository(Protocol):
    def get_provider(self, therapist_id: str) -> ProviderSchedule:
        ...


class BookingRepository(Protocol):
    def find_active_bookings(self, therapist_id: str, day: date) -> List[Booking]:
        ...

    def find_active_bookings_between(self, therapist_id: str, start: date, end: date) -> List[Booking]:
        ...

    def insert_booking(self, booking: Booking) -> str:
        ...

    def delete_booking(self, booking_id: str) -> None:
        ...

    def serialized(self, therapist_id: str) -> ContextManager["BookingRepository"]:
        """Repository bound to one storage transaction holding the therapist's write lock."""
        ...


class NotificationSender(Protocol):
    def notify(self, booking: Booking, schedule: ProviderSchedule) -> None:
        """Deliver the booking confirmation. Raises on failure."""
        ...


class Ledger(Protocol):
    def debit(self, therapist_id: str, amount: float, reason: str, booking_id: str | None = None) -> None:
        ...
