from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import Body, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.engine import Engine
from sqlmodel import Session

from .config import Settings, configure_logging, get_settings
from .db import create_db_and_tables, create_db_engine, verify_connection
from .errors import SchedulingError, ValidationError
from .models import BlackoutRange, Booking
from .schemas import (
    AvailabilityResponse, SlotOut,
    BalanceResponse, HealthResponse,
    BlackoutCreatedResponse, BlackoutIn,
    BookingCreatedResponse, BookingListFilters, BookingListResponse, BookingOut,
    RescheduleRequest, StatusUpdateRequest, TopUpRequest,
    WeeklyAvailabilityRequest, WeeklyAvailabilityResponse, AvailabilityRuleIn,
    problems_from,
)
from .services.availability import AvailabilityResolver
from .services.booking import BookingTransaction
from .services.ids import canonical_provider_id
from .services.ledger import SqlLedger
from .services.lifecycle import BookingLifecycle
from .services.notifier import LogNotificationSender
from .services.ports import Ledger, NotificationSender
from .services.repository import SqlBookingRepository, SqlProviderRepository, open_session, storage_errors
from .services.schedule import add_blackout, remove_blackout, replace_weekly_availability

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Process-wide collaborators, built once at startup and shared by every request."""

    engine: Engine
    ledger: SqlLedger
    resolver: AvailabilityResolver
    transaction: BookingTransaction
    lifecycle: BookingLifecycle


def build_services(
    settings: Settings,
    engine: Engine,
    notifier: Optional[NotificationSender] = None,
    ledger: Optional[Ledger] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Services:
    providers = SqlProviderRepository(engine)
    bookings = SqlBookingRepository(engine)
    sql_ledger = SqlLedger(engine)
    return Services(
        engine=engine,
        ledger=sql_ledger,
        resolver=AvailabilityResolver(
            providers,
            bookings,
            display_cap=settings.display_cap,
            max_days=settings.max_availability_days,
            clock=clock,
        ),
        transaction=BookingTransaction(
            providers,
            bookings,
            notifier or LogNotificationSender(),
            ledger or sql_ledger,
            booking_fee=settings.booking_fee,
            compensation_attempts=settings.compensation_attempts,
            compensation_backoff_seconds=settings.compensation_backoff_seconds,
            clock=clock,
        ),
        lifecycle=BookingLifecycle(bookings, clock=clock),
    )


def booking_out(b: Booking) -> BookingOut:
    return BookingOut(
        id=b.id,
        therapist_id=canonical_provider_id(b.therapist_id),
        patient_name=b.patient_name,
        patient_email=b.patient_email,
        appointment_date=b.appointment_date,
        start_time=b.start_time,
        end_time=b.end_time,
        status=b.status.value,
        notes=b.notes,
        updated_at=b.updated_at,
    )


def create_app(
    settings: Optional[Settings] = None,
    notifier: Optional[NotificationSender] = None,
    ledger: Optional[Ledger] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine = create_db_engine(settings)
        verify_connection(engine)
        create_db_and_tables(engine)
        app.state.services = build_services(settings, engine, notifier, ledger, clock)
        logger.info("Scheduler started")
        try:
            yield
        finally:
            engine.dispose()
            logger.info("Scheduler stopped")

    app = FastAPI(title="Therapy Scheduling API", version="1.0.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(SchedulingError)
    async def scheduling_error_handler(request: Request, exc: SchedulingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        err = ValidationError("Invalid request", problems_from(exc))
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    def get_services(request: Request) -> Services:
        return request.app.state.services

    def get_session(services: Services = Depends(get_services)):
        with open_session(services.engine) as session:
            yield session

    @app.get("/api/health", response_model=HealthResponse)
    def health(services: Services = Depends(get_services)):
        verify_connection(services.engine)
        return HealthResponse(status="ok")

    @app.get("/api/therapists/{therapist_id}/availability", response_model=AvailabilityResponse)
    def availability(
        therapist_id: str,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        services: Services = Depends(get_services),
    ):
        if not start_date or not end_date:
            raise ValidationError(
                "startDate and endDate are required",
                ["start_date and end_date query parameters are required (YYYY-MM-DD)"],
            )
        slots = services.resolver.resolve(therapist_id, start_date, end_date)
        return AvailabilityResponse(
            therapist_id=canonical_provider_id(therapist_id),
            start_date=start_date,
            end_date=end_date,
            slots=[SlotOut(**vars(s)) for s in slots],
        )

    @app.get("/api/therapists/{therapist_id}/schedule", response_model=WeeklyAvailabilityResponse)
    def schedule(therapist_id: str, services: Services = Depends(get_services)):
        provider = SqlProviderRepository(services.engine).get_provider(therapist_id)
        return WeeklyAvailabilityResponse(
            therapist_id=provider.therapist_id,
            rules=[AvailabilityRuleIn(**vars(r)) for r in provider.rules],
            blackouts=[BlackoutIn(**vars(b)) for b in provider.blackouts],
        )

    @app.put("/api/therapists/{therapist_id}/availability", response_model=WeeklyAvailabilityResponse)
    def set_availability(
        therapist_id: str,
        req: WeeklyAvailabilityRequest,
        session: Session = Depends(get_session),
        services: Services = Depends(get_services),
    ):
        with storage_errors("replace_weekly_availability", therapist_id):
            replace_weekly_availability(session, therapist_id, req.rules)
        return schedule(therapist_id, services)

    @app.post("/api/therapists/{therapist_id}/blackouts", response_model=BlackoutCreatedResponse, status_code=201)
    def create_blackout(therapist_id: str, req: BlackoutIn, session: Session = Depends(get_session)):
        with storage_errors("add_blackout", therapist_id):
            row: BlackoutRange = add_blackout(session, therapist_id, req)
        return BlackoutCreatedResponse(id=row.id, blackout=req)

    @app.delete("/api/therapists/{therapist_id}/blackouts/{blackout_id}", status_code=204)
    def delete_blackout(therapist_id: str, blackout_id: int, session: Session = Depends(get_session)):
        with storage_errors("remove_blackout", therapist_id):
            remove_blackout(session, therapist_id, blackout_id)
        return Response(status_code=204)

    @app.post("/api/bookings", response_model=BookingCreatedResponse, status_code=201)
    def create_booking(payload: Dict[str, Any] = Body(...), services: Services = Depends(get_services)):
        confirmation = services.transaction.execute(payload)
        return BookingCreatedResponse(
            booking_id=confirmation.booking_id,
            cancellation_token=confirmation.cancellation_token,
            booking=booking_out(confirmation.booking),
        )

    @app.get("/api/cancel/{token}", response_model=BookingOut)
    def cancellation_preview(token: str, services: Services = Depends(get_services)):
        return booking_out(services.lifecycle.preview_cancellation(token))

    @app.post("/api/cancel/{token}", response_model=BookingOut)
    def cancel_booking(token: str, services: Services = Depends(get_services)):
        return booking_out(services.lifecycle.cancel_by_token(token))

    @app.get("/api/therapists/{therapist_id}/bookings", response_model=BookingListResponse)
    def list_bookings(
        therapist_id: str,
        status: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        limit: Optional[int] = None,
        services: Services = Depends(get_services),
    ):
        page = services.lifecycle.list_bookings(therapist_id, status, start_date, end_date, limit)
        return BookingListResponse(
            bookings=[booking_out(b) for b in page.bookings],
            total=len(page.bookings),
            filters=BookingListFilters(
                status=page.status.value if page.status else "all",
                start_date=page.start_date.isoformat(),
                end_date=page.end_date.isoformat(),
                limit=page.limit,
            ),
        )

    @app.delete("/api/therapists/{therapist_id}/bookings/{booking_id}", response_model=BookingOut)
    def cancel_booking_as_therapist(therapist_id: str, booking_id: str, services: Services = Depends(get_services)):
        return booking_out(services.lifecycle.cancel_by_id(therapist_id, booking_id))

    @app.patch("/api/therapists/{therapist_id}/bookings/{booking_id}", response_model=BookingOut)
    def update_booking(
        therapist_id: str,
        booking_id: str,
        req: StatusUpdateRequest,
        services: Services = Depends(get_services),
    ):
        booking = services.lifecycle.update_booking(therapist_id, booking_id, status=req.status, notes=req.notes)
        return booking_out(booking)

    @app.post("/api/therapists/{therapist_id}/bookings/{booking_id}/reschedule", response_model=BookingOut)
    def reschedule_booking(
        therapist_id: str,
        booking_id: str,
        req: RescheduleRequest,
        services: Services = Depends(get_services),
    ):
        return booking_out(services.lifecycle.reschedule(therapist_id, booking_id, req))

    @app.post("/api/therapists/{therapist_id}/topup", response_model=BalanceResponse)
    def top_up(therapist_id: str, req: TopUpRequest, services: Services = Depends(get_services)):
        balance = services.ledger.top_up(therapist_id, req.amount)
        return BalanceResponse(therapist_id=canonical_provider_id(therapist_id), balance=balance)

    return app


app = create_app()
