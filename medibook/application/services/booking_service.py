import logging
from dataclasses import dataclass
from datetime import date, datetime
from functools import wraps
from typing import Callable, Dict, List, Optional

from ..ports.appointments_repo import AppointmentDto, StorageTimeout
from ..ports.audit_logger import AuditLogger
from ..ports.directory import Directory, DoctorProfile, PatientProfile
from .appointment_ledger import AppointmentAction, AppointmentLedger
from .slot_calendar import SlotCalendar
from ...exceptions import BookingError, InternalError, NotFound, Timeout, ValidationError
from ...schemas.appointments import (
    AppointmentCreate,
    AppointmentNotesUpdate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentTransition,
    FreeSlotsResponse,
)

logger = logging.getLogger(__name__)


def translate_errors(func):
    """Let domain errors through and turn anything else into InternalError."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BookingError:
            raise
        except StorageTimeout:
            raise Timeout("Storage did not respond in time")
        except Exception:
            logger.exception(f"Unexpected failure in {func.__name__}")
            raise InternalError("Failed to process the booking request")

    return wrapper


@dataclass
class BookingService:
    ledger: AppointmentLedger
    calendar: SlotCalendar
    directory: Directory
    audit: AuditLogger
    max_notes_length: int = 2000
    request_id: Optional[str] = None
    today: Callable[[], date] = date.today

    # -- validation -------------------------------------------------------

    def _parse_date(self, value: str, field: str = "appointment_date") -> date:
        try:
            return datetime.strptime(value, "%Y-%m-%d").date()
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {field} format. Use YYYY-MM-DD")

    def _parse_future_date(self, value: str, field: str = "appointment_date") -> date:
        parsed = self._parse_date(value, field)
        if parsed < self.today():
            raise ValidationError(f"{field} cannot be in the past")
        return parsed

    def _parse_slot(self, value: str, field: str = "time_slot") -> str:
        try:
            slot = datetime.strptime(value, "%H:%M").strftime("%H:%M")
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid {field} format. Use HH:MM")
        if not self.calendar.hours.is_on_grid(slot):
            raise ValidationError(f"{slot} is not a bookable slot")
        return slot

    def _parse_action(self, value: str) -> AppointmentAction:
        try:
            return AppointmentAction(value)
        except ValueError:
            allowed = [a.value for a in AppointmentAction]
            raise ValidationError(f"Invalid action. Must be one of: {allowed}")

    def _check_notes(self, notes: Optional[str]) -> Optional[str]:
        if notes is not None and len(notes) > self.max_notes_length:
            raise ValidationError(f"Notes cannot exceed {self.max_notes_length} characters")
        return notes

    # -- directory --------------------------------------------------------

    def _require_patient(self, patient_id: int) -> PatientProfile:
        patient = self.directory.resolve_patient(patient_id)
        if not patient:
            raise NotFound(f"Patient {patient_id} not found")
        return patient

    def _require_doctor(self, doctor_id: int) -> DoctorProfile:
        doctor = self.directory.resolve_doctor(doctor_id)
        if not doctor:
            raise NotFound(f"Doctor {doctor_id} not found")
        return doctor

    def _to_response(self, appt: AppointmentDto, patients: Optional[Dict] = None, doctors: Optional[Dict] = None) -> AppointmentResponse:
        patients = {} if patients is None else patients
        doctors = {} if doctors is None else doctors
        if appt.patient_id not in patients:
            patients[appt.patient_id] = self.directory.resolve_patient(appt.patient_id)
        if appt.doctor_id not in doctors:
            doctors[appt.doctor_id] = self.directory.resolve_doctor(appt.doctor_id)
        patient = patients[appt.patient_id]
        doctor = doctors[appt.doctor_id]
        return AppointmentResponse(
            id=appt.id,
            patient_id=appt.patient_id,
            doctor_id=appt.doctor_id,
            patient_name=patient.name if patient else None,
            patient_phone=patient.phone if patient else None,
            doctor_name=doctor.name if doctor else None,
            specialization=doctor.specialization if doctor else None,
            appointment_date=appt.appointment_date.strftime("%Y-%m-%d"),
            time_slot=appt.time_slot,
            status=appt.status.value,
            notes=appt.notes,
            created_at=appt.created_at,
            updated_at=appt.updated_at,
        )

    def _to_responses(self, appts: List[AppointmentDto]) -> List[AppointmentResponse]:
        patients: Dict = {}
        doctors: Dict = {}
        return [self._to_response(a, patients, doctors) for a in appts]

    def _audit(self, action: str, success: bool, appointment_id: Optional[int] = None, patient_id: Optional[int] = None, doctor_id: Optional[int] = None, **details) -> None:
        self.audit.log(
            action,
            appointment_id=appointment_id,
            patient_id=patient_id,
            doctor_id=doctor_id,
            request_id=self.request_id,
            success=success,
            details=details,
        )

    # -- operations -------------------------------------------------------

    @translate_errors
    def create_appointment(self, request: AppointmentCreate) -> AppointmentResponse:
        appointment_date = self._parse_future_date(request.appointment_date)
        time_slot = self._parse_slot(request.time_slot)
        notes = self._check_notes(request.notes)
        patient = self._require_patient(request.patient_id)
        doctor = self._require_doctor(request.doctor_id)
        try:
            appt = self.ledger.create(patient.id, doctor.id, appointment_date, time_slot, notes)
        except BookingError as e:
            self._audit("appointment.create", False, patient_id=patient.id, doctor_id=doctor.id, kind=e.kind,
                        date=appointment_date.isoformat(), time_slot=time_slot)
            raise
        self._audit("appointment.create", True, appt.id, patient.id, doctor.id,
                    date=appointment_date.isoformat(), time_slot=time_slot)
        return self._to_response(appt, {patient.id: patient}, {doctor.id: doctor})

    @translate_errors
    def get_appointment(self, appointment_id: int) -> AppointmentResponse:
        return self._to_response(self.ledger.get(appointment_id))

    @translate_errors
    def transition(self, appointment_id: int, request: AppointmentTransition) -> AppointmentResponse:
        action = self._parse_action(request.action)
        try:
            appt = self.ledger.transition(appointment_id, action)
        except BookingError as e:
            self._audit(f"appointment.{action.value}", False, appointment_id, kind=e.kind)
            raise
        self._audit(f"appointment.{action.value}", True, appt.id, appt.patient_id, appt.doctor_id, status=appt.status.value)
        return self._to_response(appt)

    @translate_errors
    def reschedule(self, appointment_id: int, request: AppointmentReschedule) -> AppointmentResponse:
        new_date = self._parse_future_date(request.new_date, "new_date")
        new_slot = self._parse_slot(request.new_time_slot, "new_time_slot")
        try:
            appt = self.ledger.reschedule(appointment_id, new_date, new_slot)
        except BookingError as e:
            self._audit("appointment.reschedule", False, appointment_id, kind=e.kind,
                        date=new_date.isoformat(), time_slot=new_slot)
            raise
        self._audit("appointment.reschedule", True, appt.id, appt.patient_id, appt.doctor_id,
                    date=new_date.isoformat(), time_slot=new_slot)
        return self._to_response(appt)

    @translate_errors
    def update_notes(self, appointment_id: int, request: AppointmentNotesUpdate) -> AppointmentResponse:
        notes = self._check_notes(request.notes)
        try:
            appt = self.ledger.update_notes(appointment_id, notes)
        except BookingError as e:
            self._audit("appointment.notes", False, appointment_id, kind=e.kind)
            raise
        self._audit("appointment.notes", True, appt.id, appt.patient_id, appt.doctor_id)
        return self._to_response(appt)

    @translate_errors
    def list_by_doctor(self, doctor_id: int, date_from: Optional[str] = None, date_to: Optional[str] = None) -> List[AppointmentResponse]:
        start = self._parse_date(date_from, "date_from") if date_from else None
        end = self._parse_date(date_to, "date_to") if date_to else None
        if start and end and start > end:
            raise ValidationError("date_from must not be after date_to")
        doctor = self._require_doctor(doctor_id)
        appts = self.ledger.list_by_doctor(doctor.id, start, end)
        patients: Dict = {}
        doctors = {doctor.id: doctor}
        return [self._to_response(a, patients, doctors) for a in appts]

    @translate_errors
    def list_by_patient(self, patient_id: int) -> List[AppointmentResponse]:
        patient = self._require_patient(patient_id)
        appts = self.ledger.list_by_patient(patient.id)
        patients = {patient.id: patient}
        doctors: Dict = {}
        return [self._to_response(a, patients, doctors) for a in appts]

    @translate_errors
    def list_all(self) -> List[AppointmentResponse]:
        return self._to_responses(self.ledger.list_all())

    @translate_errors
    def free_slots(self, doctor_id: int, date_str: str) -> FreeSlotsResponse:
        day = self._parse_date(date_str, "date")
        doctor = self._require_doctor(doctor_id)
        slots = [] if day < self.today() else list(self.calendar.free_slots(doctor.id, day))
        return FreeSlotsResponse(
            doctor_id=doctor.id,
            date=day.strftime("%Y-%m-%d"),
            slot_minutes=self.calendar.hours.slot_minutes,
            slots=slots,
        )
