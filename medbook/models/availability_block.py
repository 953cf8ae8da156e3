"""Availability block model definitions."""

import uuid

from sqlalchemy import Column, DateTime, String
from medbook.database import Base


class AvailabilityBlock(Base):
    """A period in which a doctor cannot be booked (vacation, sick leave...)."""
    __tablename__ = "availability_blocks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    organization_id = Column(String(36), index=True, nullable=False)
    doctor_id = Column(String(36), index=True, nullable=False)
    start_datetime = Column(DateTime, nullable=False)
    end_datetime = Column(DateTime, nullable=False)
    reason = Column(String)
    block_type = Column(String, default="other")
