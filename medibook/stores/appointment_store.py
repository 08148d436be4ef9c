"""Appointment store: persistence for appointments."""

from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.models.appointment import CANCELLED, Appointment
from medibook.models.availability import Availability


class AppointmentStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: int) -> Appointment | None:
        return self.db.get(Appointment, appointment_id)

    def find_live_by_slot(self, slot_id: int) -> Appointment | None:
        return (
            self.db.query(Appointment)
            .filter(Appointment.slot_id == slot_id, Appointment.status != CANCELLED)
            .first()
        )

    def list_for(
        self,
        patient_id: int | None = None,
        doctor_id: int | None = None,
        statuses: Iterable[str] | None = None,
    ) -> list[Appointment]:
        query = self.db.query(Appointment).join(Availability, Appointment.slot_id == Availability.id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if statuses is not None:
            query = query.filter(Appointment.status.in_(list(statuses)))
        return query.order_by(Availability.start_time.asc()).all()

    def create(self, **fields) -> Appointment:
        appointment = Appointment(**fields)
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def save(self, appointment: Appointment) -> Appointment:
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return appointment

    def delete(self, appointment: Appointment) -> None:
        self.db.delete(appointment)
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
