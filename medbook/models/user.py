"""User model definitions."""

import uuid

from sqlalchemy import Column, String
from medbook.database import Base


class User(Base):
    """Represents an application user (patient, doctor, staff or admin)."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/staff/admin/superadmin
    organization_id = Column(String(36), index=True)
    first_name = Column(String)
    last_name = Column(String)
