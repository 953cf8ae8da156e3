"""Appointment model definitions."""

import uuid

from sqlalchemy import Column, Date, Integer, String, Time
from medbook.database import Base


class Appointment(Base):
    """Represents a booked appointment."""
    __tablename__ = "appointments"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), index=True, nullable=False)
    doctor_id = Column(String(36), index=True, nullable=False)
    patient_id = Column(String(36))
    service_id = Column(String(36))
    location_id = Column(String(36))
    appointment_date = Column(Date, nullable=False)
    start_time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, default=30)
    status = Column(String, default="scheduled")
    notes = Column(String)
