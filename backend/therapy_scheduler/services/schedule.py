from __future__ import annotations

from typing import List, Optional

from sqlalchemy import delete
from sqlmodel import Session, select

from ..errors import NotFoundError
from ..models import AvailabilityRule, BlackoutRange, Therapist
from ..schemas import AvailabilityRuleIn, BlackoutIn
from .ids import canonical_provider_id, new_therapist_id
from .repository import find_therapist


def _require_therapist(session: Session, therapist_id: str) -> Therapist:
    therapist = find_therapist(session, therapist_id)
    if not therapist:
        raise NotFoundError("Therapist not found")
    return therapist


def create_therapist(
    session: Session,
    name: str,
    email: str,
    specialization: str = "",
    therapist_id: Optional[str] = None,
) -> Therapist:
    therapist = Therapist(
        id=canonical_provider_id(therapist_id) if therapist_id else new_therapist_id(),
        name=name,
        email=email,
        specialization=specialization,
    )
    session.add(therapist)
    session.commit()
    session.refresh(therapist)
    return therapist


def replace_weekly_availability(session: Session, therapist_id: str, rules: List[AvailabilityRuleIn]) -> List[AvailabilityRule]:
    """Swap the therapist's whole weekly pattern. Existing bookings are left untouched."""
    therapist = _require_therapist(session, therapist_id)
    session.exec(delete(AvailabilityRule).where(AvailabilityRule.therapist_id == therapist.id))
    rows = [
        AvailabilityRule(
            therapist_id=therapist.id,
            day_of_week=r.day_of_week,
            start_time=r.start_time,
            end_time=r.end_time,
        )
        for r in sorted(rules, key=lambda r: (r.day_of_week, r.start_time))
    ]
    session.add_all(rows)
    session.commit()
    return rows


def add_blackout(session: Session, therapist_id: str, blackout: BlackoutIn) -> BlackoutRange:
    therapist = _require_therapist(session, therapist_id)
    row = BlackoutRange(
        therapist_id=therapist.id,
        from_date=blackout.from_date,
        to_date=blackout.to_date,
        start_time=blackout.start_time,
        end_time=blackout.end_time,
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def remove_blackout(session: Session, therapist_id: str, blackout_id: int) -> None:
    therapist = _require_therapist(session, therapist_id)
    row = session.exec(
        select(BlackoutRange).where(
            BlackoutRange.id == blackout_id,
            BlackoutRange.therapist_id == therapist.id,
        )
    ).first()
    if not row:
        raise NotFoundError("Blackout not found")
    session.delete(row)
    session.commit()
