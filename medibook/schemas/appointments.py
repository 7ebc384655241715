# medibook/schemas/appointments.py
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class AppointmentCreate(BaseModel):
    patient_id: int
    doctor_id: int
    appointment_date: str  # YYYY-MM-DD
    time_slot: str  # HH:MM
    notes: Optional[str] = None


class AppointmentTransition(BaseModel):
    action: str  # confirm | cancel | complete | mark_no_show


class AppointmentReschedule(BaseModel):
    new_date: str  # YYYY-MM-DD
    new_time_slot: str  # HH:MM


class AppointmentNotesUpdate(BaseModel):
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    patient_name: Optional[str] = None
    patient_phone: Optional[str] = None
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None
    appointment_date: str
    time_slot: str
    status: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class FreeSlotsResponse(BaseModel):
    doctor_id: int
    date: str
    slot_minutes: int
    slots: List[str] = Field(default_factory=list)
