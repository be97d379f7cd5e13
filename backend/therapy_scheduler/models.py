from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import text
from sqlmodel import SQLModel, Field, Index


class BookingStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    completed = "completed"
    cancelled = "cancelled"
    no_show = "no_show"


class LedgerEntryType(str, Enum):
    charge = "charge"
    credit = "credit"


class Therapist(SQLModel, table=True):
    # canonical hyphenated UUID string
    id: str = Field(primary_key=True)
    name: str
    email: str
    specialization: str = ""
    balance: float = 0.0
    # bumped inside every booking write transaction; the UPDATE is the per-therapist lock
    booking_version: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


class AvailabilityRule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    therapist_id: str = Field(foreign_key="therapist.id", index=True)
    day_of_week: int
    start_time: str
    end_time: str


class BlackoutRange(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    therapist_id: str = Field(foreign_key="therapist.id", index=True)
    from_date: str
    to_date: str
    start_time: str
    end_time: str


class Booking(SQLModel, table=True):
    id: str = Field(primary_key=True)
    # no foreign key: legacy rows carry the 32-char hex form of the therapist UUID
    therapist_id: str
    appointment_date: str
    start_time: str
    end_time: str
    status: BookingStatus = BookingStatus.confirmed
    cancellation_token: str = Field(index=True)

    patient_name: str
    patient_email: str
    patient_phone: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None
    locale: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


Index("idx_booking_therapist_date", Booking.therapist_id, Booking.appointment_date)
Index(
    "uq_booking_active_start",
    Booking.therapist_id,
    Booking.appointment_date,
    Booking.start_time,
    unique=True,
    sqlite_where=text("status != 'cancelled'"),
    postgresql_where=text("status != 'cancelled'"),
)


class LedgerTransaction(SQLModel, table=True):
    id: str = Field(primary_key=True)
    therapist_id: str = Field(foreign_key="therapist.id", index=True)
    entry_type: LedgerEntryType
    amount: float
    description: str
    booking_id: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class BookingEvent(SQLModel, table=True):
    id: str = Field(primary_key=True)
    booking_id: str = Field(index=True)
    therapist_id: str
    event_type: str
    payload_json: str
    created_at: datetime = Field(default_factory=datetime.utcnow)
