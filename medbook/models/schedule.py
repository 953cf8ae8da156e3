"""Weekly doctor schedule model definitions."""

import uuid

from sqlalchemy import Boolean, Column, Integer, String, Time
from medbook.database import Base


class DoctorAvailability(Base):
    """Recurring weekly availability template for a doctor."""
    __tablename__ = "doctor_availability"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), index=True, nullable=False)
    doctor_id = Column(String(36), index=True, nullable=False)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True)
    location_id = Column(String(36))
