from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Sequence

from ..errors import ValidationError
from ..models import Booking
from .conflicts import overlapping
from .ids import canonical_provider_id
from .ports import Blackout, BookingRepository, ProviderRepository, ProviderSchedule
from .slots import CandidateSlot, generate_slots
from .timeutils import combine, date_range, day_of_week, parse_date, to_minutes

logger = logging.getLogger(__name__)

DEFAULT_DISPLAY_CAP = 2


def is_blocked(slot: CandidateSlot, blackouts: Iterable[Blackout]) -> bool:
    """True if the slot's wall-clock window overlaps any blackout interval."""
    slot_start = combine(slot.date, slot.start_time)
    slot_end = combine(slot.date, slot.end_time)
    for b in blackouts:
        blocked_start = combine(parse_date(b.from_date), b.start_time)
        blocked_end = combine(parse_date(b.to_date), b.end_time)
        if slot_start < blocked_end and blocked_start < slot_end:
            return True
    return False


def _cap_available(day_slots: List[CandidateSlot], cap: int) -> List[CandidateSlot]:
    by_start = lambda s: to_minutes(s.start_time)  # noqa: E731
    available = sorted((s for s in day_slots if s.status == "available"), key=by_start)[:cap]
    shown = [s for s in day_slots if s.status in ("booked", "blocked")] + available
    return sorted(shown, key=by_start)


def classify_slots(
    schedule: ProviderSchedule,
    start_date: date,
    end_date: date,
    bookings: Sequence[Booking],
    now: datetime,
    display_cap: int = DEFAULT_DISPLAY_CAP,
) -> List[CandidateSlot]:
    """
    Expand the weekly rules over ``[start_date, end_date]`` and label each slot.

    Past dates produce nothing. A non-past date without rules produces a
    single ``unavailable`` marker. Blackouts win over bookings; whatever is
    neither blocked nor booked is ``available``, except slots on the current
    date that have already started. The display cap trims only the
    ``available`` slots of each day.
    """
    today = now.date()
    bookings_by_date: Dict[str, List[Booking]] = defaultdict(list)
    for b in bookings:
        bookings_by_date[b.appointment_date].append(b)

    out: List[CandidateSlot] = []
    for d in date_range(start_date, end_date):
        if d < today:
            continue

        rules = [r for r in schedule.rules if r.day_of_week == day_of_week(d)]
        if not rules:
            out.append(CandidateSlot.unavailable(d))
            continue

        day_bookings = bookings_by_date.get(d.isoformat(), [])
        day_slots: List[CandidateSlot] = []
        for rule in rules:
            for slot in generate_slots(rule, d):
                if is_blocked(slot, schedule.blackouts):
                    slot.status = "blocked"
                    day_slots.append(slot)
                    continue

                hits = overlapping(day_bookings, slot.start_time, slot.end_time)
                if hits:
                    slot.status = "booked"
                    slot.booking_id = hits[0].id
                    slot.patient_name = hits[0].patient_name
                    day_slots.append(slot)
                    continue

                if d == today and combine(d, slot.start_time) < now:
                    continue
                day_slots.append(slot)

        out.extend(_cap_available(day_slots, display_cap))

    return out


class AvailabilityResolver:
    """Read path: the slots a patient may pick from. Takes no locks; results may be stale."""

    def __init__(
        self,
        providers: ProviderRepository,
        bookings: BookingRepository,
        display_cap: int = DEFAULT_DISPLAY_CAP,
        max_days: int = 92,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.providers = providers
        self.bookings = bookings
        self.display_cap = display_cap
        self.max_days = max_days
        self.clock = clock

    def resolve(self, therapist_id: str, start_date: str, end_date: str) -> List[CandidateSlot]:
        problems = []
        parsed = {}
        for name, value in (("start_date", start_date), ("end_date", end_date)):
            try:
                parsed[name] = parse_date(value)
            except ValidationError as exc:
                problems.append(f"{name}: {exc.message}")
        start, end = parsed.get("start_date"), parsed.get("end_date")
        if start and end:
            if start > end:
                problems.append("start_date must be before or equal to end_date")
            elif (end - start).days + 1 > self.max_days:
                problems.append(f"date range may span at most {self.max_days} days")
        if problems:
            raise ValidationError("Invalid availability query", problems)

        therapist_id = canonical_provider_id(therapist_id)
        schedule = self.providers.get_provider(therapist_id)
        bookings = self.bookings.find_active_bookings_between(therapist_id, start, end)

        slots = classify_slots(schedule, start, end, bookings, self.clock(), self.display_cap)
        logger.debug("Resolved %d slots for therapist=%s %s..%s", len(slots), therapist_id, start, end)
        return slots
