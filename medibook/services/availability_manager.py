"""Availability Manager: lifecycle and conflict rules for doctor slots.

Slots of one doctor on one day conflict when either boundary lands within
the overlap tolerance of the same boundary of another slot. This is a
proximity test on the edges, not an interval intersection: two slots that
do not overlap in time can still clash when their edges are close.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from medibook.core import config
from medibook.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from medibook.models.availability import WEEKDAYS, Availability
from medibook.models.user import ADMIN
from medibook.schemas import SlotPatch
from medibook.stores.appointment_store import AppointmentStore
from medibook.stores.slot_store import SlotStore

logger = logging.getLogger(__name__)


def normalize_day_of_week(day: str | None) -> str:
    if not isinstance(day, str) or day.strip().capitalize() not in WEEKDAYS:
        raise ValidationError('Invalid day of week.')
    return day.strip().capitalize()


class AvailabilityManager:
    def __init__(
        self,
        slots: SlotStore,
        appointments: AppointmentStore,
        clock: Callable[[], datetime] = datetime.now,
        tolerance_minutes: int = config.SLOT_OVERLAP_TOLERANCE_MINUTES,
    ):
        self.slots = slots
        self.appointments = appointments
        self.clock = clock
        self.tolerance = timedelta(minutes=tolerance_minutes)

    def is_overlapping(
        self,
        doctor_id: int,
        start_time: datetime,
        end_time: datetime,
        day_of_week: str,
        exclude_id: int | None = None,
    ) -> bool:
        existing = self.slots.find_near(
            doctor_id,
            day_of_week,
            start_time,
            end_time,
            self.tolerance,
            exclude_id=exclude_id,
        )
        return existing is not None

    def create_slot(
        self,
        doctor_id: int,
        start_time: datetime | None,
        end_time: datetime | None,
        day_of_week: str | None,
    ) -> Availability:
        if start_time is None or end_time is None:
            raise ValidationError('Start time and end time are required.')
        day = normalize_day_of_week(day_of_week)
        if end_time <= start_time:
            raise ValidationError('End time must be after start time.')

        if self.is_overlapping(doctor_id, start_time, end_time, day):
            raise ConflictError(
                f'Cannot create availability within {self._tolerance_minutes} minutes of an existing time slot.'
            )

        slot = self.slots.create(
            doctor_id=doctor_id,
            start_time=start_time,
            end_time=end_time,
            day_of_week=day,
            is_booked=False,
        )
        logger.info('Doctor %s published slot %s (%s %s)', doctor_id, slot.id, day, start_time.isoformat())
        return slot

    def update_slot(
        self,
        slot_id: int,
        caller_id: int,
        patch: SlotPatch,
        caller_role: str | None = None,
    ) -> Availability:
        slot = self._get_owned_slot(slot_id, caller_id, caller_role, action='update')

        day = normalize_day_of_week(patch.day_of_week) if patch.day_of_week is not None else None

        if patch.touches_schedule:
            new_start = patch.start_time or slot.start_time
            new_end = patch.end_time or slot.end_time
            new_day = day or slot.day_of_week

            if new_end <= new_start:
                raise ValidationError('End time must be after start time.')

            if self.is_overlapping(slot.doctor_id, new_start, new_end, new_day, exclude_id=slot.id):
                raise ConflictError(
                    f'Cannot update availability within {self._tolerance_minutes} minutes of an existing time slot.'
                )

            slot.start_time = new_start
            slot.end_time = new_end
            slot.day_of_week = new_day

        if patch.is_booked is not None:
            slot.is_booked = patch.is_booked

        return self.slots.save(slot)

    def delete_slot(self, slot_id: int, caller_id: int, caller_role: str | None = None) -> None:
        slot = self._get_owned_slot(slot_id, caller_id, caller_role, action='delete')

        if self.appointments.find_live_by_slot(slot.id) is not None:
            raise ConflictError('This availability slot has an active appointment and cannot be deleted.')

        self.slots.delete(slot)
        logger.info('Slot %s deleted by user %s', slot_id, caller_id)

    def get_slot(self, slot_id: int) -> Availability:
        slot = self.slots.get(slot_id)
        if slot is None:
            raise NotFoundError('Availability not found.')
        return slot

    def list_slots(self) -> list[Availability]:
        return self.slots.list_all()

    def list_slots_for_doctor(self, doctor_id: int) -> list[Availability]:
        return self.slots.list_for_doctor(doctor_id)

    def list_open_slots(
        self,
        doctor_id: int,
        limit: int = config.SLOT_SEARCH_LIMIT,
        lookahead_days: int = config.SLOT_LOOKAHEAD_DAYS,
    ) -> list[Availability]:
        now = self.clock()
        return self.slots.list_open(doctor_id, now, now + timedelta(days=lookahead_days), limit)

    @property
    def _tolerance_minutes(self) -> int:
        return int(self.tolerance.total_seconds() // 60)

    def _get_owned_slot(self, slot_id: int, caller_id: int, caller_role: str | None, action: str) -> Availability:
        slot = self.get_slot(slot_id)
        if caller_role != ADMIN and slot.doctor_id != caller_id:
            raise AuthorizationError(f'Not authorized to {action} this availability.')
        return slot
