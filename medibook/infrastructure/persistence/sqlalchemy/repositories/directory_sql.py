from typing import Optional
from sqlmodel import Session, select

from ..models import Doctor, Patient
from .storage_errors import storage_timeouts
from .....application.ports.directory import Directory, DoctorProfile, PatientProfile


class SqlDirectory(Directory):
    """Read-only view over the identity tables owned by registration."""

    def __init__(self, session: Session):
        self.session = session

    def resolve_patient(self, patient_id: int) -> Optional[PatientProfile]:
        with storage_timeouts(self.session):
            p = self.session.exec(select(Patient).where(Patient.id == patient_id)).first()
        if not p:
            return None
        return PatientProfile(id=p.id, name=p.name, phone=p.phone)

    def resolve_doctor(self, doctor_id: int) -> Optional[DoctorProfile]:
        with storage_timeouts(self.session):
            d = self.session.exec(select(Doctor).where(Doctor.id == doctor_id)).first()
        if not d:
            return None
        return DoctorProfile(id=d.id, name=d.name, specialization=d.specialization or "General")
