from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import List, Literal, Optional

from .ports import Rule
from .timeutils import from_minutes, to_minutes

SESSION_MINUTES = 60
BREAK_MINUTES = 30
SLOT_MINUTES = SESSION_MINUTES + BREAK_MINUTES

SlotStatus = Literal["available", "booked", "blocked", "unavailable"]


@dataclass
class CandidateSlot:
    date: date
    start_time: str
    end_time: str
    status: SlotStatus = "available"
    session_start: Optional[str] = None
    session_end: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    booking_id: Optional[str] = None
    patient_name: Optional[str] = None

    @classmethod
    def unavailable(cls, d: date) -> "CandidateSlot":
        return cls(date=d, start_time="00:00", end_time="00:00", status="unavailable")


def generate_slots(rule: Rule, d: date) -> List[CandidateSlot]:
    """
    Tile one weekly rule's window on ``d`` with 90-minute slots
    (60-minute session followed by a 30-minute break).

    Slots start at the rule's start and never run past its end; a remainder
    shorter than one slot is left unused.
    """
    window_start = to_minutes(rule.start_time)
    window_end = to_minutes(rule.end_time)

    slots: List[CandidateSlot] = []
    cursor = window_start
    while cursor + SLOT_MINUTES <= window_end:
        start = from_minutes(cursor)
        session_end = from_minutes(cursor + SESSION_MINUTES)
        end = from_minutes(cursor + SLOT_MINUTES)
        slots.append(CandidateSlot(
            date=d,
            start_time=start,
            end_time=end,
            session_start=start,
            session_end=session_end,
            break_start=session_end,
            break_end=end,
        ))
        cursor += SLOT_MINUTES

    return slots
