from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass
class PatientProfile:
    id: int
    name: str
    phone: Optional[str] = None


@dataclass
class DoctorProfile:
    id: int
    name: str
    specialization: str = "General"


class Directory(Protocol):
    def resolve_patient(self, patient_id: int) -> Optional[PatientProfile]:
        ...

    def resolve_doctor(self, doctor_id: int) -> Optional[DoctorProfile]:
        ...
