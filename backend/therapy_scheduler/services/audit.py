from __future__ import annotations

import json
from typing import Any, Dict

from sqlmodel import Session

from ..models import BookingEvent
from .ids import new_entry_id


def log_event(session: Session, booking_id: str, therapist_id: str, event_type: str, payload: Dict[str, Any]) -> None:
    """
    Append-only audit trail for booking changes.

    The row is only added to ``session``; it is committed together with the
    change it describes.
    """
    ev = BookingEvent(
        id=new_entry_id("evt"),
        booking_id=booking_id,
        therapist_id=therapist_id,
        event_type=event_type,
        payload_json=json.dumps(payload, ensure_ascii=False),
    )
    session.add(ev)
