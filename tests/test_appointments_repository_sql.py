import sqlite3
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from medibook.application.ports.appointments_repo import AppointmentStatus, StorageTimeout, UniqueViolation
from medibook.application.services.appointment_ledger import AppointmentAction, AppointmentLedger
from medibook.application.services.booking_service import BookingService
from medibook.application.services.slot_calendar import SlotCalendar, WorkingHours
from medibook.exceptions import Timeout
from medibook.infrastructure.persistence.sqlalchemy.models import Doctor, Patient
from medibook.infrastructure.persistence.sqlalchemy.repositories.appointments_repository_sql import SqlAppointmentsRepository
from medibook.infrastructure.persistence.sqlalchemy.repositories.directory_sql import SqlDirectory
from medibook.schemas.appointments import AppointmentCreate

DAY = date(2024, 3, 1)
NOW = datetime(2024, 2, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def session():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(engine)
    with Session(engine) as s:
        s.add(Patient(id=1, name="Ann", email="ann@example.com", phone="555-0001"))
        s.add(Patient(id=2, name="Bob", email="bob@example.com"))
        s.add(Doctor(id=10, name="Dr. House", email="house@example.com", specialization="Diagnostics"))
        s.commit()
        yield s
    engine.dispose()


def test_create_and_read_back(session):
    repo = SqlAppointmentsRepository(session)
    created = repo.create(1, 10, DAY, "09:00", "first", NOW)
    assert created.id is not None
    assert created.status == AppointmentStatus.REQUESTED
    fetched = repo.get_by_id(created.id)
    assert fetched == created
    assert repo.get_by_id(999) is None


def test_active_slot_index_rejects_double_booking(session):
    repo = SqlAppointmentsRepository(session)
    repo.create(1, 10, DAY, "09:00", None, NOW)
    with pytest.raises(UniqueViolation) as exc:
        repo.create(2, 10, DAY, "09:00", None, NOW)
    assert exc.value.constraint == "slot"
    # session is usable after the rollback
    assert len(repo.list_active_for_doctor_day(10, DAY)) == 1


def test_patient_day_index(session):
    repo = SqlAppointmentsRepository(session)
    repo.create(1, 10, DAY, "09:00", None, NOW)
    with pytest.raises(UniqueViolation) as exc:
        repo.create(1, 10, DAY, "10:00", None, NOW)
    assert exc.value.constraint == "patient_day"


def test_cancelled_rows_leave_the_indexes(session):
    repo = SqlAppointmentsRepository(session)
    first = repo.create(1, 10, DAY, "09:00", None, NOW)
    repo.save(replace(first, status=AppointmentStatus.CANCELLED, updated_at=datetime(2024, 2, 1, 9, 5, tzinfo=timezone.utc)))
    again = repo.create(1, 10, DAY, "09:00", None, NOW)
    assert again.id != first.id
    assert [a.id for a in repo.list_active_for_doctor_day(10, DAY)] == [again.id]


def test_save_updates_mutable_fields(session):
    repo = SqlAppointmentsRepository(session)
    appt = repo.create(1, 10, DAY, "09:00", None, NOW)
    later = datetime(2024, 2, 2, 12, 0, tzinfo=timezone.utc)
    saved = repo.save(replace(appt, appointment_date=date(2024, 3, 2), time_slot="10:30", notes="moved", updated_at=later))
    assert (saved.appointment_date, saved.time_slot, saved.notes, saved.updated_at) == (date(2024, 3, 2), "10:30", "moved", later)
    assert saved.created_at == NOW


def test_listings_are_ordered_and_filtered(session):
    repo = SqlAppointmentsRepository(session)
    repo.create(1, 10, DAY, "10:00", None, NOW)
    repo.create(2, 10, DAY, "09:00", None, NOW)
    repo.create(1, 10, date(2024, 3, 5), "09:00", None, NOW)

    assert [(a.appointment_date, a.time_slot) for a in repo.list_by_doctor(10)] == [
        (date(2024, 3, 5), "09:00"), (DAY, "10:00"), (DAY, "09:00")
    ]
    assert len(repo.list_by_doctor(10, date_from=date(2024, 3, 2))) == 1
    assert len(repo.list_by_doctor(10, date_to=DAY)) == 2
    assert [a.time_slot for a in repo.list_by_patient(2)] == ["09:00"]
    assert len(repo.list_all()) == 3
    assert repo.find_active_for_patient_day(1, 10, DAY)[0].time_slot == "10:00"


def test_directory_resolves_profiles(session):
    directory = SqlDirectory(session)
    assert directory.resolve_patient(1).name == "Ann"
    assert directory.resolve_patient(3) is None
    doctor = directory.resolve_doctor(10)
    assert (doctor.name, doctor.specialization) == ("Dr. House", "Diagnostics")
    assert directory.resolve_doctor(11) is None


def test_ledger_default_clock_writes_aware_timestamps(session):
    repo = SqlAppointmentsRepository(session)
    ledger = AppointmentLedger(repo=repo, calendar=SlotCalendar(repo=repo, hours=WorkingHours.from_strings("09:00", "12:00", 30)))
    appt = ledger.create(1, 10, date(2030, 3, 1), "09:00")
    assert appt.created_at.tzinfo is not None

    confirmed = ledger.transition(appt.id, AppointmentAction.CONFIRM)
    assert confirmed.status == AppointmentStatus.CONFIRMED
    assert confirmed.updated_at > appt.updated_at
    assert repo.get_by_id(appt.id) == confirmed


class LockedSession:
    """Session stand-in whose every round trip fails the same way."""

    def __init__(self, error):
        self.error = error
        self.rollbacks = 0

    def exec(self, *args, **kwargs):
        raise self.error

    def add(self, row):
        pass

    def commit(self):
        raise self.error

    def rollback(self):
        self.rollbacks += 1


def locked(message="database is locked"):
    return OperationalError("SELECT 1", {}, sqlite3.OperationalError(message))


@pytest.mark.parametrize("error", [locked(), locked("canceling statement due to statement timeout"),
                                   PoolTimeoutError("QueuePool limit of size 5 overflow 10 reached, connection timed out")])
def test_busy_database_reads_raise_storage_timeout(error):
    s = LockedSession(error)
    with pytest.raises(StorageTimeout):
        SqlAppointmentsRepository(s).get_by_id(1)
    assert s.rollbacks == 1


def test_busy_database_writes_raise_storage_timeout():
    s = LockedSession(locked())
    with pytest.raises(StorageTimeout):
        SqlAppointmentsRepository(s).create(1, 10, DAY, "09:00", None, NOW)
    assert s.rollbacks == 1


def test_other_operational_errors_propagate():
    with pytest.raises(OperationalError):
        SqlAppointmentsRepository(LockedSession(locked("no such table: appointments"))).list_all()


def test_directory_lookup_on_busy_database_is_timeout(ledger, calendar, audit):
    directory = SqlDirectory(LockedSession(locked()))
    with pytest.raises(StorageTimeout):
        directory.resolve_doctor(10)

    booking = BookingService(ledger=ledger, calendar=calendar, directory=directory, audit=audit,
                             today=lambda: date(2024, 2, 1))
    with pytest.raises(Timeout):
        booking.create_appointment(
            AppointmentCreate(patient_id=1, doctor_id=10, appointment_date="2024-03-01", time_slot="09:00")
        )
