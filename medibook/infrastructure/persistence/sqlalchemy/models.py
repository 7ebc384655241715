# medibook/infrastructure/persistence/sqlalchemy/models.py
from typing import Optional, List
from datetime import datetime, date, timezone
from sqlalchemy import DateTime, Index, text
from sqlmodel import SQLModel, Field, Relationship

ACTIVE_STATUS_CLAUSE = "status IN ('requested', 'confirmed')"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Patient(SQLModel, table=True):
    __tablename__ = "patients"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))

    appointments: List["Appointment"] = Relationship(back_populates="patient")


class Doctor(SQLModel, table=True):
    __tablename__ = "doctors"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, unique=True)
    phone: Optional[str] = None
    specialization: str = Field(default="General")
    created_at: datetime = Field(default_factory=_utcnow, sa_type=DateTime(timezone=True))

    appointments: List["Appointment"] = Relationship(back_populates="doctor")


class Appointment(SQLModel, table=True):
    __tablename__ = "appointments"
    # Partial unique indexes back the booking invariants across processes.
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "doctor_id", "appointment_date", "time_slot",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        ),
        Index(
            "uq_appointments_active_patient_day",
            "patient_id", "doctor_id", "appointment_date",
            unique=True,
            sqlite_where=text(ACTIVE_STATUS_CLAUSE),
            postgresql_where=text(ACTIVE_STATUS_CLAUSE),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    patient_id: int = Field(foreign_key="patients.id", index=True)
    doctor_id: int = Field(foreign_key="doctors.id", index=True)
    appointment_date: date
    time_slot: str = Field(max_length=5)
    status: str = Field(default="requested")
    notes: Optional[str] = None
    created_at: datetime = Field(sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(sa_type=DateTime(timezone=True))

    patient: Optional[Patient] = Relationship(back_populates="appointments")
    doctor: Optional[Doctor] = Relationship(back_populates="appointments")
