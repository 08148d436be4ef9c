"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from medibook.database import Base
from medibook.models.availability import Availability


SCHEDULED = 'scheduled'
CONFIRMED = 'confirmed'
CANCELLED = 'cancelled'
COMPLETED = 'completed'

APPOINTMENT_STATUSES = (SCHEDULED, CONFIRMED, CANCELLED, COMPLETED)
# Statuses that hold their slot.
LIVE_STATUSES = (SCHEDULED, CONFIRMED, COMPLETED)
CANCELLABLE_STATUSES = (SCHEDULED, CONFIRMED)


class Appointment(Base):
    """Represents a patient's booking of one availability slot."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    slot_id = Column(Integer, ForeignKey("availability.id"), nullable=False)
    service_type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=SCHEDULED)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    slot = relationship(Availability, lazy="joined")

    @property
    def is_live(self) -> bool:
        return self.status != CANCELLED
