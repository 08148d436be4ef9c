"""User model definitions."""

from sqlalchemy import Column, Integer, String
from medibook.database import Base


PATIENT = 'patient'
DOCTOR = 'doctor'
ADMIN = 'admin'


class User(Base):
    """Represents an application user (patient, doctor or admin)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/admin
    first_name = Column(String)
    last_name = Column(String)
    specialization = Column(String, nullable=True)
    hospital = Column(String, nullable=True)
    status = Column(String, default='unverified')  # verified/unverified/blocked

    @property
    def display_name(self) -> str:
        name = ' '.join(part for part in (self.first_name, self.last_name) if part)
        return name or self.email or 'the user'
