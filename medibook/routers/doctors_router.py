from fastapi import APIRouter, Depends, Query

from ..application.services.booking_service import BookingService
from ..dependencies import get_booking_service
from ..schemas.appointments import FreeSlotsResponse

router = APIRouter(prefix="/api/doctors", tags=["Doctors"])


@router.get("/{doctor_id}/slots", response_model=FreeSlotsResponse)
def get_free_slots(
    doctor_id: int,
    date: str = Query(..., description="YYYY-MM-DD"),
    booking: BookingService = Depends(get_booking_service),
):
    return booking.free_slots(doctor_id, date)
