import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from ..ports.appointments_repo import (
    AppointmentsRepository,
    AppointmentDto,
    AppointmentStatus,
    StorageTimeout,
    UniqueViolation,
)
from .slot_calendar import SlotCalendar
from ...exceptions import DuplicateBooking, InvalidTransition, NotFound, SlotConflict, Timeout

logger = logging.getLogger(__name__)

DoctorDay = Tuple[int, date]


class AppointmentAction(str, Enum):
    CONFIRM = "confirm"
    CANCEL = "cancel"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


TRANSITIONS: Dict[Tuple[AppointmentStatus, AppointmentAction], AppointmentStatus] = {
    (AppointmentStatus.REQUESTED, AppointmentAction.CONFIRM): AppointmentStatus.CONFIRMED,
    (AppointmentStatus.REQUESTED, AppointmentAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.CANCEL): AppointmentStatus.CANCELLED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.COMPLETE): AppointmentStatus.COMPLETED,
    (AppointmentStatus.CONFIRMED, AppointmentAction.MARK_NO_SHOW): AppointmentStatus.NO_SHOW,
}


def next_status(current: AppointmentStatus, action: AppointmentAction) -> AppointmentStatus:
    try:
        return TRANSITIONS[(current, action)]
    except KeyError:
        raise InvalidTransition(current.value, action.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DoctorDayLocks:
    """Process-wide mutual exclusion keyed by (doctor_id, date).

    Entries are reference counted and dropped once no caller holds or waits
    on them, so the registry does not grow with the calendar.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[DoctorDay, List] = {}

    def _checkout(self, key: DoctorDay) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _checkin(self, key: DoctorDay) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, keys: List[DoctorDay], timeout: float) -> Iterator[None]:
        # Sorted acquisition keeps two-key holders (reschedule) deadlock free.
        ordered = sorted(set(keys))
        acquired: List[Tuple[DoctorDay, threading.Lock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=timeout):
                    self._checkin(key)
                    raise Timeout(f"Timed out waiting for doctor {key[0]} on {key[1].isoformat()}")
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


@dataclass
class AppointmentLedger:
    repo: AppointmentsRepository
    calendar: SlotCalendar
    locks: DoctorDayLocks = field(default_factory=DoctorDayLocks)
    timeout_seconds: float = 5.0
    clock: Callable[[], datetime] = _utcnow

    def _storage(self, operation: Callable, *args, **kwargs):
        try:
            return operation(*args, **kwargs)
        except StorageTimeout as e:
            logger.warning(f"Storage timed out during {operation.__name__}: {e}")
            raise Timeout("Storage did not respond in time")

    def _touch(self, previous: datetime) -> datetime:
        now = self.clock()
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    def _load(self, appointment_id: int) -> AppointmentDto:
        appt = self._storage(self.repo.get_by_id, appointment_id)
        if not appt:
            raise NotFound(f"Appointment {appointment_id} not found")
        return appt

    def _check_slot(self, doctor_id: int, appointment_date: date, time_slot: str, exclude_id: Optional[int] = None) -> None:
        clash = self._storage(self.calendar.conflicting, doctor_id, appointment_date, time_slot, exclude_id)
        if clash:
            raise SlotConflict(
                f"Doctor {doctor_id} is already booked on {appointment_date.isoformat()} at {clash.time_slot}"
            )

    def _check_patient_day(self, patient_id: int, doctor_id: int, appointment_date: date, exclude_id: Optional[int] = None) -> None:
        existing = self._storage(self.repo.find_active_for_patient_day, patient_id, doctor_id, appointment_date)
        if any(a.id != exclude_id for a in existing):
            raise DuplicateBooking(
                f"Patient {patient_id} already has an active booking with doctor {doctor_id} on {appointment_date.isoformat()}"
            )

    def _translate_unique(self, e: UniqueViolation, doctor_id: int, appointment_date: date, time_slot: str) -> Exception:
        logger.info(f"Storage rejected booking for doctor {doctor_id} on {appointment_date} {time_slot}: {e.constraint}")
        if e.constraint == "slot":
            return SlotConflict(f"Doctor {doctor_id} is already booked on {appointment_date.isoformat()} at {time_slot}")
        return DuplicateBooking(f"Patient already has an active booking with doctor {doctor_id} on {appointment_date.isoformat()}")

    def create(self, patient_id: int, doctor_id: int, appointment_date: date, time_slot: str, notes: Optional[str] = None) -> AppointmentDto:
        with self.locks.hold([(doctor_id, appointment_date)], self.timeout_seconds):
            self._check_slot(doctor_id, appointment_date, time_slot)
            self._check_patient_day(patient_id, doctor_id, appointment_date)
            try:
                appt = self._storage(self.repo.create, patient_id, doctor_id, appointment_date, time_slot, notes, self.clock())
            except UniqueViolation as e:
                raise self._translate_unique(e, doctor_id, appointment_date, time_slot)
        logger.info(f"Appointment {appt.id} requested: doctor {doctor_id} {appointment_date} {time_slot}")
        return appt

    def get(self, appointment_id: int) -> AppointmentDto:
        return self._load(appointment_id)

    def transition(self, appointment_id: int, action: AppointmentAction) -> AppointmentDto:
        current = self._load(appointment_id)
        with self.locks.hold([(current.doctor_id, current.appointment_date)], self.timeout_seconds):
            # Re-read under the lock; a concurrent reschedule may have moved it.
            current = self._load(appointment_id)
            status = next_status(current.status, action)
            updated = replace(current, status=status, updated_at=self._touch(current.updated_at))
            saved = self._storage(self.repo.save, updated)
        logger.info(f"Appointment {appointment_id}: {current.status.value} -> {status.value}")
        return saved

    def reschedule(self, appointment_id: int, new_date: date, new_time_slot: str) -> AppointmentDto:
        current = self._load(appointment_id)
        keys = [(current.doctor_id, current.appointment_date), (current.doctor_id, new_date)]
        with self.locks.hold(keys, self.timeout_seconds):
            current = self._load(appointment_id)
            if not current.is_active:
                raise InvalidTransition(current.status.value, "reschedule")
            self._check_slot(current.doctor_id, new_date, new_time_slot, exclude_id=current.id)
            self._check_patient_day(current.patient_id, current.doctor_id, new_date, exclude_id=current.id)
            updated = replace(
                current,
                appointment_date=new_date,
                time_slot=new_time_slot,
                updated_at=self._touch(current.updated_at),
            )
            try:
                saved = self._storage(self.repo.save, updated)
            except UniqueViolation as e:
                raise self._translate_unique(e, current.doctor_id, new_date, new_time_slot)
        logger.info(f"Appointment {appointment_id} moved to {new_date} {new_time_slot}")
        return saved

    def update_notes(self, appointment_id: int, notes: Optional[str]) -> AppointmentDto:
        current = self._load(appointment_id)
        with self.locks.hold([(current.doctor_id, current.appointment_date)], self.timeout_seconds):
            current = self._load(appointment_id)
            if not current.is_active:
                raise InvalidTransition(current.status.value, "edit notes of")
            updated = replace(current, notes=notes, updated_at=self._touch(current.updated_at))
            return self._storage(self.repo.save, updated)

    @staticmethod
    def _most_recent_first(appts: List[AppointmentDto]) -> List[AppointmentDto]:
        return sorted(appts, key=lambda a: (a.appointment_date, a.time_slot, a.id), reverse=True)

    def list_by_doctor(self, doctor_id: int, date_from: Optional[date] = None, date_to: Optional[date] = None) -> List[AppointmentDto]:
        return self._most_recent_first(self._storage(self.repo.list_by_doctor, doctor_id, date_from, date_to))

    def list_by_patient(self, patient_id: int) -> List[AppointmentDto]:
        return self._most_recent_first(self._storage(self.repo.list_by_patient, patient_id))

    def list_all(self) -> List[AppointmentDto]:
        return self._most_recent_first(self._storage(self.repo.list_all))
