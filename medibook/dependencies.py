from functools import lru_cache

from fastapi import Depends, Request
from sqlmodel import Session

from .config import settings
from .database import get_session
from .application.services.appointment_ledger import AppointmentLedger, DoctorDayLocks
from .application.services.booking_service import BookingService
from .application.services.slot_calendar import SlotCalendar, WorkingHours
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from .infrastructure.persistence.sqlalchemy.repositories.directory_sql import SqlDirectory


@lru_cache()
def get_working_hours() -> WorkingHours:
    return WorkingHours.from_strings(settings.CLINIC_OPENS_AT, settings.CLINIC_CLOSES_AT, settings.SLOT_MINUTES)


def get_doctor_day_locks(request: Request) -> DoctorDayLocks:
    return request.app.state.doctor_day_locks


def get_booking_service(
    request: Request,
    session: Session = Depends(get_session),
    locks: DoctorDayLocks = Depends(get_doctor_day_locks),
) -> BookingService:
    repo = SqlAppointmentsRepository(session)
    calendar = SlotCalendar(repo=repo, hours=get_working_hours())
    ledger = AppointmentLedger(
        repo=repo,
        calendar=calendar,
        locks=locks,
        timeout_seconds=settings.STORAGE_TIMEOUT_SECONDS,
    )
    return BookingService(
        ledger=ledger,
        calendar=calendar,
        directory=SqlDirectory(session),
        audit=StdAuditLogger(),
        max_notes_length=settings.MAX_NOTES_LENGTH,
        request_id=getattr(request.state, "request_id", None),
    )
