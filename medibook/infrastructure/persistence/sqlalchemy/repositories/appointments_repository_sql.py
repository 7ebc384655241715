import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from ..models import Appointment
from .storage_errors import as_utc, storage_timeouts
from .....application.ports.appointments_repo import (
    AppointmentsRepository,
    AppointmentDto,
    AppointmentStatus,
    UniqueViolation,
    ACTIVE_STATUSES,
)

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_STATUSES]


def _unique_constraint(error: IntegrityError) -> Optional[str]:
    message = str(error.orig).lower()
    if "uq_appointments_active_slot" in message or "appointments.time_slot" in message:
        return "slot"
    if "uq_appointments_active_patient_day" in message or "appointments.patient_id" in message:
        return "patient_day"
    return None


class SqlAppointmentsRepository(AppointmentsRepository):
    def __init__(self, session: Session):
        self.session = session

    def _appt_to_dto(self, a: Appointment) -> AppointmentDto:
        return AppointmentDto(
            id=a.id,
            patient_id=a.patient_id,
            doctor_id=a.doctor_id,
            appointment_date=a.appointment_date,
            time_slot=a.time_slot,
            status=AppointmentStatus(a.status),
            notes=a.notes,
            created_at=as_utc(a.created_at),
            updated_at=as_utc(a.updated_at),
        )

    def _run(self, query):
        with storage_timeouts(self.session):
            # populate_existing: rows may have changed since this session first loaded them
            return self.session.exec(query.execution_options(populate_existing=True)).all()

    def _commit(self, row: Appointment) -> AppointmentDto:
        doctor_id, day = row.doctor_id, row.appointment_date
        with storage_timeouts(self.session):
            try:
                self.session.add(row)
                self.session.commit()
            except IntegrityError as e:
                self.session.rollback()
                constraint = _unique_constraint(e)
                if constraint is None:
                    raise
                logger.info(f"Constraint {constraint} rejected write for doctor {doctor_id} on {day}")
                raise UniqueViolation(constraint)
            self.session.refresh(row)
        return self._appt_to_dto(row)

    def get_by_id(self, appointment_id: int) -> Optional[AppointmentDto]:
        rows = self._run(select(Appointment).where(Appointment.id == appointment_id))
        return self._appt_to_dto(rows[0]) if rows else None

    def list_active_for_doctor_day(self, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        rows = self._run(
            select(Appointment)
            .where(Appointment.doctor_id == doctor_id)
            .where(Appointment.appointment_date == appointment_date)
            .where(Appointment.status.in_(_ACTIVE))
            .order_by(Appointment.time_slot)
        )
        return [self._appt_to_dto(r) for r in rows]

    def find_active_for_patient_day(self, patient_id: int, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        rows = self._run(
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .where(Appointment.doctor_id == doctor_id)
            .where(Appointment.appointment_date == appointment_date)
            .where(Appointment.status.in_(_ACTIVE))
        )
        return [self._appt_to_dto(r) for r in rows]

    def create(self, patient_id: int, doctor_id: int, appointment_date: date, time_slot: str, notes: Optional[str], created_at: datetime) -> AppointmentDto:
        appt = Appointment(
            patient_id=patient_id,
            doctor_id=doctor_id,
            appointment_date=appointment_date,
            time_slot=time_slot,
            status=AppointmentStatus.REQUESTED.value,
            notes=notes,
            created_at=created_at,
            updated_at=created_at,
        )
        return self._commit(appt)

    def save(self, appointment: AppointmentDto) -> AppointmentDto:
        rows = self._run(select(Appointment).where(Appointment.id == appointment.id))
        if not rows:
            raise LookupError(f"Appointment {appointment.id} disappeared during update")
        a = rows[0]
        a.appointment_date = appointment.appointment_date
        a.time_slot = appointment.time_slot
        a.status = appointment.status.value
        a.notes = appointment.notes
        a.updated_at = appointment.updated_at
        return self._commit(a)

    def list_by_doctor(self, doctor_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[AppointmentDto]:
        query = select(Appointment).where(Appointment.doctor_id == doctor_id)
        if date_from is not None:
            query = query.where(Appointment.appointment_date >= date_from)
        if date_to is not None:
            query = query.where(Appointment.appointment_date <= date_to)
        rows = self._run(query.order_by(Appointment.appointment_date.desc(), Appointment.time_slot.desc()))
        return [self._appt_to_dto(r) for r in rows]

    def list_by_patient(self, patient_id: int) -> List[AppointmentDto]:
        rows = self._run(
            select(Appointment)
            .where(Appointment.patient_id == patient_id)
            .order_by(Appointment.appointment_date.desc(), Appointment.time_slot.desc())
        )
        return [self._appt_to_dto(r) for r in rows]

    def list_all(self) -> List[AppointmentDto]:
        rows = self._run(
            select(Appointment).order_by(Appointment.appointment_date.desc(), Appointment.time_slot.desc())
        )
        return [self._appt_to_dto(r) for r in rows]
