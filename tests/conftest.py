import threading
import time
from datetime import date, datetime, timezone
from typing import Optional

import pytest

from medibook.application.ports.appointments_repo import AppointmentDto, AppointmentStatus, UniqueViolation
from medibook.application.ports.directory import DoctorProfile, PatientProfile
from medibook.application.services.appointment_ledger import AppointmentLedger, DoctorDayLocks
from medibook.application.services.booking_service import BookingService
from medibook.application.services.slot_calendar import SlotCalendar, WorkingHours

TODAY = date(2024, 2, 1)


class FakeApptRepo:
    def __init__(self):
        self._id = 1
        self._guard = threading.Lock()
        self.appts = {}
        self.read_delay = 0.0
        self.reject_with: Optional[str] = None
        self.fail_with: Optional[Exception] = None

    def get_by_id(self, appointment_id: int):
        if self.fail_with:
            raise self.fail_with
        return self.appts.get(appointment_id)

    def list_active_for_doctor_day(self, doctor_id: int, d: date):
        if self.read_delay:
            time.sleep(self.read_delay)
        return [a for a in self.appts.values() if a.doctor_id == doctor_id and a.appointment_date == d and a.is_active]

    def find_active_for_patient_day(self, patient_id: int, doctor_id: int, d: date):
        return [
            a for a in self.appts.values()
            if a.patient_id == patient_id and a.doctor_id == doctor_id and a.appointment_date == d and a.is_active
        ]

    def create(self, patient_id, doctor_id, appointment_date, time_slot, notes, created_at):
        if self.reject_with:
            raise UniqueViolation(self.reject_with)
        with self._guard:
            a = AppointmentDto(self._id, patient_id, doctor_id, appointment_date, time_slot,
                               AppointmentStatus.REQUESTED, notes, created_at, created_at)
            self.appts[a.id] = a
            self._id += 1
        return a

    def save(self, appointment):
        self.appts[appointment.id] = appointment
        return appointment

    def list_by_doctor(self, doctor_id, date_from=None, date_to=None):
        return [
            a for a in self.appts.values()
            if a.doctor_id == doctor_id
            and (date_from is None or a.appointment_date >= date_from)
            and (date_to is None or a.appointment_date <= date_to)
        ]

    def list_by_patient(self, patient_id):
        return [a for a in self.appts.values() if a.patient_id == patient_id]

    def list_all(self):
        return list(self.appts.values())


class FakeDirectory:
    def __init__(self):
        self.patients = {1: PatientProfile(1, "Ann", "555-0001"), 2: PatientProfile(2, "Bob", "555-0002"),
                         3: PatientProfile(3, "Cid")}
        self.doctors = {10: DoctorProfile(10, "Dr. House", "Diagnostics"), 11: DoctorProfile(11, "Dr. Grey")}
        self.calls = []

    def resolve_patient(self, patient_id):
        self.calls.append(("patient", patient_id))
        return self.patients.get(patient_id)

    def resolve_doctor(self, doctor_id):
        self.calls.append(("doctor", doctor_id))
        return self.doctors.get(doctor_id)


class FakeAudit:
    def __init__(self):
        self.entries = []

    def log(self, action, appointment_id=None, patient_id=None, doctor_id=None, request_id=None, success=True, details=None):
        self.entries.append({
            "action": action,
            "appointment_id": appointment_id,
            "patient_id": patient_id,
            "doctor_id": doctor_id,
            "request_id": request_id,
            "success": success,
            "details": details or {},
        })


class FrozenClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self):
        return self.now


def make_appt(id, patient_id=1, doctor_id=10, d=date(2024, 3, 1), slot="09:00", status=AppointmentStatus.REQUESTED):
    ts = datetime(2024, 2, 1, 8, 0, tzinfo=timezone.utc)
    return AppointmentDto(id, patient_id, doctor_id, d, slot, status, None, ts, ts)


@pytest.fixture
def hours():
    return WorkingHours.from_strings("09:00", "12:00", 30)


@pytest.fixture
def repo():
    return FakeApptRepo()


@pytest.fixture
def calendar(repo, hours):
    return SlotCalendar(repo=repo, hours=hours)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger(repo, calendar, clock):
    return AppointmentLedger(repo=repo, calendar=calendar, locks=DoctorDayLocks(), timeout_seconds=1.0, clock=clock)


@pytest.fixture
def directory():
    return FakeDirectory()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def booking(ledger, calendar, directory, audit):
    return BookingService(
        ledger=ledger,
        calendar=calendar,
        directory=directory,
        audit=audit,
        max_notes_length=50,
        request_id="req-1",
        today=lambda: TODAY,
    )

