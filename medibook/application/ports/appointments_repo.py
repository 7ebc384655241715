from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Protocol
from datetime import datetime, date


class AppointmentStatus(str, Enum):
    REQUESTED = "requested"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


ACTIVE_STATUSES = (AppointmentStatus.REQUESTED, AppointmentStatus.CONFIRMED)


@dataclass(frozen=True)
class AppointmentDto:
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    time_slot: str
    status: AppointmentStatus
    notes: Optional[str]
    created_at: datetime
    updated_at: datetime

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class StorageTimeout(Exception):
    """Storage did not answer within the configured timeout."""


class UniqueViolation(Exception):
    """An active-booking uniqueness constraint rejected a write.

    ``constraint`` is ``"slot"`` for the doctor/date/slot index and
    ``"patient_day"`` for the patient/doctor/date index.
    """

    def __init__(self, constraint: str):
        super().__init__(constraint)
        self.constraint = constraint


class AppointmentsRepository(Protocol):
    def get_by_id(self, appointment_id: int) -> Optional[AppointmentDto]:
        ...

    def list_active_for_doctor_day(self, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        ...

    def find_active_for_patient_day(self, patient_id: int, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        ...

    def create(self, patient_id: int, doctor_id: int, appointment_date: date, time_slot: str, notes: Optional[str], created_at: datetime) -> AppointmentDto:
        ...

    def save(self, appointment: AppointmentDto) -> AppointmentDto:
        ...

    def list_by_doctor(self, doctor_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[AppointmentDto]:
        ...

    def list_by_patient(self, patient_id: int) -> List[AppointmentDto]:
        ...

    def list_all(self) -> List[AppointmentDto]:
        ...
