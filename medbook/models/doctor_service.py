"""Doctor to service association."""

from sqlalchemy import Column, String
from medbook.database import Base


class DoctorService(Base):
    """Links a doctor to a service they can provide."""
    __tablename__ = "doctor_services"

    doctor_id = Column(String(36), primary_key=True)
    service_id = Column(String(36), primary_key=True)
