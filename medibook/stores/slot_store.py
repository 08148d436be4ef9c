"""Slot store: persistence for availability slots."""

from datetime import datetime, timedelta

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.models.availability import Availability


class SlotStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, slot_id: int) -> Availability | None:
        return self.db.get(Availability, slot_id)

    def list_all(self) -> list[Availability]:
        return self.db.query(Availability).order_by(Availability.start_time.asc()).all()

    def list_for_doctor(self, doctor_id: int) -> list[Availability]:
        return (
            self.db.query(Availability)
            .filter(Availability.doctor_id == doctor_id)
            .order_by(Availability.start_time.asc())
            .all()
        )

    def list_open(self, doctor_id: int, window_start: datetime, window_end: datetime, limit: int) -> list[Availability]:
        return (
            self.db.query(Availability)
            .filter(
                Availability.doctor_id == doctor_id,
                Availability.is_booked.is_(False),
                Availability.start_time >= window_start,
                Availability.start_time < window_end,
            )
            .order_by(Availability.start_time.asc())
            .limit(limit)
            .all()
        )

    def find_near(
        self,
        doctor_id: int,
        day_of_week: str,
        start_time: datetime,
        end_time: datetime,
        tolerance: timedelta,
        exclude_id: int | None = None,
    ) -> Availability | None:
        """Return a slot of the same doctor and day whose start or end lies
        within ``tolerance`` (inclusive) of the candidate's matching boundary."""
        query = self.db.query(Availability).filter(
            Availability.doctor_id == doctor_id,
            Availability.day_of_week == day_of_week,
            or_(
                and_(
                    Availability.start_time >= start_time - tolerance,
                    Availability.start_time <= start_time + tolerance,
                ),
                and_(
                    Availability.end_time >= end_time - tolerance,
                    Availability.end_time <= end_time + tolerance,
                ),
            ),
        )
        if exclude_id is not None:
            query = query.filter(Availability.id != exclude_id)
        return query.first()

    def create(self, **fields) -> Availability:
        slot = Availability(**fields)
        self.db.add(slot)
        self._commit()
        self.db.refresh(slot)
        return slot

    def save(self, slot: Availability) -> Availability:
        self.db.add(slot)
        self._commit()
        self.db.refresh(slot)
        return slot

    def delete(self, slot: Availability) -> None:
        self.db.delete(slot)
        self._commit()

    def claim(self, slot_id: int) -> bool:
        """Flip ``is_booked`` to true only if it is currently false.

        Returns False when another writer got there first.
        """
        result = self.db.execute(
            update(Availability)
            .where(Availability.id == slot_id, Availability.is_booked.is_(False))
            .values(is_booked=True)
        )
        self._commit()
        return result.rowcount == 1

    def release(self, slot_id: int) -> None:
        self.db.execute(
            update(Availability)
            .where(Availability.id == slot_id)
            .values(is_booked=False)
        )
        self._commit()

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
