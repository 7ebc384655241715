from typing import List, Optional
from fastapi import APIRouter, Depends, Query
import logging

from ..application.services.booking_service import BookingService
from ..dependencies import get_booking_service
from ..schemas.appointments import (
    AppointmentCreate,
    AppointmentNotesUpdate,
    AppointmentReschedule,
    AppointmentResponse,
    AppointmentTransition,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/appointments", tags=["Appointments"])


@router.post("", response_model=AppointmentResponse)
def book_appointment(
    appointment_data: AppointmentCreate,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.create_appointment(appointment_data)


@router.get("", response_model=List[AppointmentResponse])
def get_all_appointments(booking: BookingService = Depends(get_booking_service)):
    return booking.list_all()


@router.get("/patient/{patient_id}", response_model=List[AppointmentResponse])
def get_patient_appointments(
    patient_id: int,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.list_by_patient(patient_id)


@router.get("/doctor/{doctor_id}", response_model=List[AppointmentResponse])
def get_doctor_appointments(
    doctor_id: int,
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD, inclusive"),
    booking: BookingService = Depends(get_booking_service),
):
    return booking.list_by_doctor(doctor_id, date_from, date_to)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.get_appointment(appointment_id)


@router.put("/{appointment_id}/status", response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    transition: AppointmentTransition,
    booking: BookingService = Depends(get_booking_service),
):
    appt = booking.transition(appointment_id, transition)
    logger.info(f"Appointment {appointment_id} is now {appt.status}")
    return appt


@router.put("/{appointment_id}/reschedule", response_model=AppointmentResponse)
def reschedule_appointment(
    appointment_id: int,
    reschedule: AppointmentReschedule,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.reschedule(appointment_id, reschedule)


@router.put("/{appointment_id}/notes", response_model=AppointmentResponse)
def update_appointment_notes(
    appointment_id: int,
    notes: AppointmentNotesUpdate,
    booking: BookingService = Depends(get_booking_service),
):
    return booking.update_notes(appointment_id, notes)
