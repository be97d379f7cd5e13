from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional

from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from ..errors import ConflictError, InternalError, NotFoundError
from ..models import AvailabilityRule, BlackoutRange, Booking, BookingStatus, Therapist
from .audit import log_event
from .ids import provider_id_forms
from .ports import Blackout, ProviderSchedule, Rule

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(
    operation: str,
    therapist_id: Optional[str] = None,
    day: Optional[date] = None,
    conflict_on_integrity: bool = False,
) -> Iterator[None]:
    """Translate SQLAlchemy failures into InternalError, logging only non-PII context."""
    try:
        yield
    except IntegrityError as exc:
        if conflict_on_integrity:
            raise ConflictError("Time slot is already booked") from exc
        logger.exception("Integrity failure in %s (therapist=%s, date=%s)", operation, therapist_id, day)
        raise InternalError(f"Storage failure in {operation}") from exc
    except SQLAlchemyError as exc:
        logger.exception("Storage failure in %s (therapist=%s, date=%s)", operation, therapist_id, day)
        raise InternalError(f"Storage failure in {operation}") from exc


def open_session(engine: Engine) -> Session:
    return Session(engine, expire_on_commit=False)


def find_therapist(session: Session, therapist_id: str) -> Optional[Therapist]:
    return session.exec(
        select(Therapist).where(Therapist.id.in_(provider_id_forms(therapist_id)))
    ).first()


class SqlProviderRepository:
    def __init__(self, engine: Engine):
        self.engine = engine

    def get_provider(self, therapist_id: str) -> ProviderSchedule:
        with storage_errors("get_provider", therapist_id), open_session(self.engine) as session:
            therapist = find_therapist(session, therapist_id)
            if not therapist:
                raise NotFoundError("Therapist not found")

            rules = session.exec(
                select(AvailabilityRule)
                .where(AvailabilityRule.therapist_id == therapist.id)
                .order_by(AvailabilityRule.day_of_week, AvailabilityRule.start_time)
            ).all()
            blackouts = session.exec(
                select(BlackoutRange)
                .where(BlackoutRange.therapist_id == therapist.id)
                .order_by(BlackoutRange.from_date, BlackoutRange.start_time)
            ).all()

            return ProviderSchedule(
                therapist_id=therapist.id,
                name=therapist.name,
                email=therapist.email,
                rules=[Rule(r.day_of_week, r.start_time, r.end_time) for r in rules],
                blackouts=[Blackout(b.from_date, b.to_date, b.start_time, b.end_time) for b in blackouts],
            )


class SqlBookingRepository:
    """
    Booking storage on a SQLModel engine.

    Unbound instances open a short session per call. ``serialized()`` yields
    an instance bound to a single session whose transaction starts by bumping
    ``Therapist.booking_version``: that UPDATE takes the therapist's row lock
    (the database write lock on SQLite), so concurrent writers for the same
    therapist run their conflict check and insert one after another.
    """

    def __init__(self, engine: Engine, session: Optional[Session] = None):
        self.engine = engine
        self._session = session

    @contextmanager
    def _use(self, commit: bool = False) -> Iterator[Session]:
        if self._session is not None:
            yield self._session
            return
        with open_session(self.engine) as session:
            yield session
            if commit:
                session.commit()

    def _active(self, therapist_id: str):
        return select(Booking).where(
            Booking.therapist_id.in_(provider_id_forms(therapist_id)),
            Booking.status != BookingStatus.cancelled,
        )

    def find_active_bookings(self, therapist_id: str, day: date) -> List[Booking]:
        with storage_errors("find_active_bookings", therapist_id, day), self._use() as session:
            stmt = self._active(therapist_id).where(Booking.appointment_date == day.isoformat())
            return list(session.exec(stmt.order_by(Booking.start_time)).all())

    def find_active_bookings_between(self, therapist_id: str, start: date, end: date) -> List[Booking]:
        with storage_errors("find_active_bookings_between", therapist_id, start), self._use() as session:
            stmt = self._active(therapist_id).where(
                Booking.appointment_date >= start.isoformat(),
                Booking.appointment_date <= end.isoformat(),
            )
            return list(session.exec(stmt.order_by(Booking.appointment_date, Booking.start_time)).all())

    def list_bookings(
        self,
        therapist_id: str,
        start: date,
        end: date,
        status: Optional[BookingStatus] = None,
        limit: int = 100,
    ) -> List[Booking]:
        """Every booking in ``[start, end]``, cancelled ones included, newest first."""
        with storage_errors("list_bookings", therapist_id, start), self._use() as session:
            stmt = select(Booking).where(
                Booking.therapist_id.in_(provider_id_forms(therapist_id)),
                Booking.appointment_date >= start.isoformat(),
                Booking.appointment_date <= end.isoformat(),
            )
            if status is not None:
                stmt = stmt.where(Booking.status == status)
            stmt = stmt.order_by(Booking.appointment_date.desc(), Booking.start_time.desc()).limit(limit)
            return list(session.exec(stmt).all())

    def insert_booking(self, booking: Booking) -> str:
        with storage_errors("insert_booking", booking.therapist_id, conflict_on_integrity=True), \
                self._use(commit=True) as session:
            session.add(booking)
            log_event(session, booking.id, booking.therapist_id, "booking_created", {
                "date": booking.appointment_date,
                "start_time": booking.start_time,
                "end_time": booking.end_time,
            })
            session.flush()
        return booking.id

    def delete_booking(self, booking_id: str) -> None:
        with storage_errors("delete_booking"), self._use(commit=True) as session:
            booking = session.get(Booking, booking_id)
            if booking is None:
                return
            session.delete(booking)
            log_event(session, booking.id, booking.therapist_id, "booking_rolled_back", {
                "date": booking.appointment_date,
                "start_time": booking.start_time,
            })

    def get_booking(self, booking_id: str) -> Optional[Booking]:
        with storage_errors("get_booking"), self._use() as session:
            return session.get(Booking, booking_id)

    def find_by_token(self, token: str) -> Optional[Booking]:
        with storage_errors("find_by_token"), self._use() as session:
            return session.exec(
                select(Booking).where(
                    Booking.cancellation_token == token,
                    Booking.status != BookingStatus.cancelled,
                )
            ).first()

    def save(self, booking: Booking, event_type: str, payload: dict) -> Booking:
        with storage_errors("save_booking", booking.therapist_id), self._use(commit=True) as session:
            booking.updated_at = datetime.utcnow()
            session.add(booking)
            log_event(session, booking.id, booking.therapist_id, event_type, payload)
            session.flush()
        return booking

    @contextmanager
    def serialized(self, therapist_id: str) -> Iterator["SqlBookingRepository"]:
        if self._session is not None:
            yield self
            return

        session = open_session(self.engine)
        try:
            with storage_errors("lock_therapist", therapist_id):
                session.exec(
                    update(Therapist)
                    .where(Therapist.id.in_(provider_id_forms(therapist_id)))
                    .values(booking_version=Therapist.booking_version + 1)
                )
            yield SqlBookingRepository(self.engine, session=session)
            with storage_errors("commit", therapist_id, conflict_on_integrity=True):
                session.commit()
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()
