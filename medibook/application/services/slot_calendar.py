from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterator, List, Optional

from ..ports.appointments_repo import AppointmentsRepository, AppointmentDto

SLOT_FORMAT = "%H:%M"


def parse_slot(value: str) -> time:
    return datetime.strptime(value, SLOT_FORMAT).time()


def format_slot(value: time) -> str:
    return value.strftime(SLOT_FORMAT)


def intervals_overlap(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


@dataclass(frozen=True)
class WorkingHours:
    """Daily slot template shared by every doctor of the clinic."""

    opens_at: time
    closes_at: time
    slot_minutes: int = 30

    @classmethod
    def from_strings(cls, opens_at: str, closes_at: str, slot_minutes: int) -> "WorkingHours":
        hours = cls(parse_slot(opens_at), parse_slot(closes_at), slot_minutes)
        if slot_minutes <= 0 or hours.opens_at >= hours.closes_at:
            raise ValueError(f"Invalid working hours {opens_at}-{closes_at} / {slot_minutes}m")
        return hours

    @property
    def duration(self) -> timedelta:
        return timedelta(minutes=self.slot_minutes)

    def slots(self) -> Iterator[str]:
        day = date.min
        current = datetime.combine(day, self.opens_at)
        closing = datetime.combine(day, self.closes_at)
        while current + self.duration <= closing:
            yield format_slot(current.time())
            current += self.duration

    def is_on_grid(self, time_slot: str) -> bool:
        return time_slot in set(self.slots())

    def slot_end(self, time_slot: str) -> time:
        start = datetime.combine(date.min, parse_slot(time_slot))
        return (start + self.duration).time()


class FreeSlots:
    """Unbooked slots of one doctor-day in ascending order.

    Occupancy is read when iteration starts, so iterating again reflects
    bookings made in between.
    """

    def __init__(self, calendar: "SlotCalendar", doctor_id: int, appointment_date: date):
        self.calendar = calendar
        self.doctor_id = doctor_id
        self.appointment_date = appointment_date

    def __iter__(self) -> Iterator[str]:
        booked = self.calendar.occupied(self.doctor_id, self.appointment_date)
        for slot in self.calendar.hours.slots():
            if not any(self.calendar.overlaps(self.appointment_date, slot, b) for b in booked):
                yield slot


@dataclass
class SlotCalendar:
    repo: AppointmentsRepository
    hours: WorkingHours

    def occupied(self, doctor_id: int, appointment_date: date) -> List[AppointmentDto]:
        return [a for a in self.repo.list_active_for_doctor_day(doctor_id, appointment_date) if a.is_active]

    def overlaps(self, appointment_date: date, time_slot: str, other: AppointmentDto) -> bool:
        start = datetime.combine(appointment_date, parse_slot(time_slot))
        other_start = datetime.combine(other.appointment_date, parse_slot(other.time_slot))
        return intervals_overlap(start, start + self.hours.duration, other_start, other_start + self.hours.duration)

    def conflicting(self, doctor_id: int, appointment_date: date, time_slot: str, exclude_id: Optional[int] = None) -> Optional[AppointmentDto]:
        for appt in self.occupied(doctor_id, appointment_date):
            if appt.id == exclude_id:
                continue
            if self.overlaps(appointment_date, time_slot, appt):
                return appt
        return None

    def is_free(self, doctor_id: int, appointment_date: date, time_slot: str, exclude_id: Optional[int] = None) -> bool:
        return self.conflicting(doctor_id, appointment_date, time_slot, exclude_id) is None

    def free_slots(self, doctor_id: int, appointment_date: date) -> FreeSlots:
        return FreeSlots(self, doctor_id, appointment_date)
