from __future__ import annotations

from datetime import date, datetime
from typing import Any, List, Literal, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, EmailStr, Field, ValidationError as PydanticValidationError
from pydantic import field_validator, model_validator

from .errors import ValidationError
from .services.ids import canonical_provider_id
from .services.slots import SlotStatus
from .services.timeutils import parse_date, to_minutes


BookingStatusName = Literal["pending", "confirmed", "completed", "cancelled", "no_show"]

M = TypeVar("M", bound=BaseModel)


def problems_from(exc: Any) -> List[str]:
    """Field problems from a pydantic or FastAPI request validation error."""
    out = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body"
        out.append(f"{loc}: {err.get('msg')}")
    return out


def parse_model(model: Type[M], payload: Any, message: str = "Invalid request") -> M:
    """Validate ``payload`` into ``model``, turning every field problem into one ValidationError."""
    if isinstance(payload, model):
        return payload
    if not isinstance(payload, Mapping):
        raise ValidationError(message, ["body: expected a JSON object"])
    try:
        return model.model_validate(payload)
    except PydanticValidationError as exc:
        raise ValidationError(message, problems_from(exc)) from None


def _check_time(v: str) -> str:
    to_minutes(v)
    return v


def _check_date(v: str) -> str:
    parse_date(v)
    return v


def _check_window(start_time: str, end_time: str) -> None:
    if to_minutes(start_time) >= to_minutes(end_time):
        raise ValueError("start_time must be before end_time")


class BookingRequest(BaseModel):
    therapist_id: str
    patient_name: str = Field(..., min_length=1, max_length=120)
    patient_email: EmailStr
    patient_phone: Optional[str] = Field(None, max_length=30)
    appointment_date: str
    start_time: str
    end_time: str
    reason: Optional[str] = Field(None, max_length=1000)
    notes: Optional[str] = Field(None, max_length=1000)
    locale: Optional[str] = Field(None, max_length=10)

    @field_validator("therapist_id")
    @classmethod
    def check_therapist_id(cls, v: str) -> str:
        try:
            return canonical_provider_id(v)
        except ValidationError as exc:
            raise ValueError(exc.message) from None

    @field_validator("patient_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("patient_name must not be blank")
        return v

    @field_validator("appointment_date")
    @classmethod
    def check_date(cls, v: str) -> str:
        return _check_date(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def check_window(self) -> "BookingRequest":
        _check_window(self.start_time, self.end_time)
        return self

    @property
    def day(self) -> date:
        return parse_date(self.appointment_date)


class RescheduleRequest(BaseModel):
    appointment_date: str
    start_time: str
    end_time: str

    @field_validator("appointment_date")
    @classmethod
    def check_date(cls, v: str) -> str:
        return _check_date(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def check_window(self) -> "RescheduleRequest":
        _check_window(self.start_time, self.end_time)
        return self

    @property
    def day(self) -> date:
        return parse_date(self.appointment_date)


class StatusUpdateRequest(BaseModel):
    status: Optional[BookingStatusName] = None
    notes: Optional[str] = Field(None, max_length=1000)


class AvailabilityRuleIn(BaseModel):
    day_of_week: int = Field(..., ge=0, le=6)  # 0=Sun ... 6=Sat
    start_time: str
    end_time: str

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def check_window(self) -> "AvailabilityRuleIn":
        _check_window(self.start_time, self.end_time)
        return self


class WeeklyAvailabilityRequest(BaseModel):
    rules: List[AvailabilityRuleIn]


class BlackoutIn(BaseModel):
    from_date: str
    to_date: str
    start_time: str
    end_time: str

    @field_validator("from_date", "to_date")
    @classmethod
    def check_date(cls, v: str) -> str:
        return _check_date(v)

    @field_validator("start_time", "end_time")
    @classmethod
    def check_time(cls, v: str) -> str:
        return _check_time(v)

    @model_validator(mode="after")
    def check_range(self) -> "BlackoutIn":
        if self.from_date > self.to_date:
            raise ValueError("from_date must be before or equal to to_date")
        if (self.from_date, to_minutes(self.start_time)) >= (self.to_date, to_minutes(self.end_time)):
            raise ValueError("blackout must start before it ends")
        return self


class TopUpRequest(BaseModel):
    amount: float = Field(..., gt=0)


class SlotOut(BaseModel):
    date: date
    start_time: str
    end_time: str
    status: SlotStatus
    session_start: Optional[str] = None
    session_end: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    booking_id: Optional[str] = None
    patient_name: Optional[str] = None


class AvailabilityResponse(BaseModel):
    therapist_id: str
    start_date: str
    end_date: str
    slots: List[SlotOut]


class BookingOut(BaseModel):
    id: str
    therapist_id: str
    patient_name: str
    patient_email: str
    appointment_date: str
    start_time: str
    end_time: str
    status: BookingStatusName
    notes: Optional[str] = None
    updated_at: Optional[datetime] = None


class BookingListFilters(BaseModel):
    status: Literal["all", "pending", "confirmed", "completed", "cancelled", "no_show"]
    start_date: str
    end_date: str
    limit: int


class BookingListResponse(BaseModel):
    bookings: List[BookingOut]
    total: int
    filters: BookingListFilters


class BookingCreatedResponse(BaseModel):
    booking_id: str
    cancellation_token: str
    booking: BookingOut


class WeeklyAvailabilityResponse(BaseModel):
    therapist_id: str
    rules: List[AvailabilityRuleIn]
    blackouts: List[BlackoutIn]


class BlackoutCreatedResponse(BaseModel):
    id: int
    blackout: BlackoutIn


class BalanceResponse(BaseModel):
    therapist_id: str
    balance: float


class HealthResponse(BaseModel):
    status: Literal["ok"]
