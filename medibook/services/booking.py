"""Booking State Machine: appointment lifecycle and slot consistency.

Transitions: scheduled -> confirmed, scheduled -> cancelled,
confirmed -> cancelled. Administrators may set any status, including
completed. A slot's ``is_booked`` flag is true exactly while a
non-cancelled appointment references it; every path here that moves an
appointment between slots or in and out of the cancelled state moves the
flag with it.

Slot claims go through ``SlotStore.claim``, a conditional write, so two
concurrent bookings of the same slot cannot both succeed. Flag writes that
precede a failed appointment write are undone; if the undo fails as well
the inconsistency is logged at CRITICAL for an operator.
"""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from medibook.core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from medibook.models.appointment import (
    APPOINTMENT_STATUSES,
    CANCELLABLE_STATUSES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    SCHEDULED,
    Appointment,
)
from medibook.models.user import ADMIN, DOCTOR, PATIENT
from medibook.schemas import AppointmentPatch
from medibook.stores.appointment_store import AppointmentStore
from medibook.stores.slot_store import SlotStore

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'Sorry, this time slot has just been booked by someone else. Please select another.'

UPCOMING_STATUSES = (SCHEDULED, CONFIRMED)
PAST_STATUSES = (COMPLETED, CANCELLED)
STATUS_FILTERS = ('upcoming', 'past', 'all') + APPOINTMENT_STATUSES


def _is_blank(value: str | None) -> bool:
    return not isinstance(value, str) or not value.strip()


class BookingStateMachine:
    def __init__(
        self,
        slots: SlotStore,
        appointments: AppointmentStore,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.slots = slots
        self.appointments = appointments
        self.clock = clock

    def book_slot(self, slot_id: int, patient_id: int, service_type: str) -> Appointment:
        if _is_blank(service_type):
            raise ValidationError('Service type is required.')

        slot = self.slots.get(slot_id)
        if slot is None:
            raise NotFoundError('Availability slot not found.')
        if slot.start_time < self.clock():
            raise ConflictError('This time slot is in the past and cannot be booked.')
        if slot.is_booked:
            raise ConflictError(SLOT_TAKEN_MESSAGE)

        if not self.slots.claim(slot_id):
            raise ConflictError(SLOT_TAKEN_MESSAGE)

        try:
            appointment = self.appointments.create(
                patient_id=patient_id,
                doctor_id=slot.doctor_id,
                slot_id=slot_id,
                service_type=service_type.strip(),
                status=SCHEDULED,
            )
        except SQLAlchemyError:
            logger.error('Appointment creation failed for slot %s; releasing the slot.', slot_id)
            self._compensate(released=[], claimed=[slot_id])
            raise

        logger.info('Patient %s booked slot %s as appointment %s', patient_id, slot_id, appointment.id)
        return appointment

    def update_appointment(
        self,
        appointment_id: int,
        caller_id: int,
        caller_role: str,
        patch: AppointmentPatch,
    ) -> Appointment:
        if patch.status is not None and patch.status not in APPOINTMENT_STATUSES:
            raise ValidationError('Invalid appointment status provided.')
        if patch.service_type is not None and _is_blank(patch.service_type):
            raise ValidationError('Service type cannot be empty.')

        appointment = self._get(appointment_id)
        self._authorize_participant(appointment, caller_id, caller_role, 'modify')
        self._authorize_patch(appointment, caller_role, patch)

        old_status = appointment.status
        new_status = patch.status if patch.status is not None else old_status
        old_slot_id = appointment.slot_id
        new_slot_id = patch.slot_id if patch.slot_id is not None else old_slot_id
        was_live = old_status != CANCELLED
        will_live = new_status != CANCELLED

        claimed: list[int] = []
        released: list[int] = []

        if new_slot_id != old_slot_id:
            new_slot = self.slots.get(new_slot_id)
            if new_slot is None:
                raise NotFoundError('Availability slot not found.')
            if new_slot.is_booked:
                raise ConflictError('The new availability slot is already booked.')
            if will_live:
                if not self.slots.claim(new_slot_id):
                    raise ConflictError('The new availability slot is already booked.')
                claimed.append(new_slot_id)
            if was_live:
                self._release(old_slot_id, released, claimed)
            appointment.slot_id = new_slot_id
            appointment.doctor_id = new_slot.doctor_id
        elif was_live and not will_live:
            self.slots.release(old_slot_id)
            released.append(old_slot_id)
        elif will_live and not was_live:
            if not self.slots.claim(old_slot_id):
                raise ConflictError(SLOT_TAKEN_MESSAGE)
            claimed.append(old_slot_id)

        appointment.status = new_status
        if patch.service_type is not None:
            appointment.service_type = patch.service_type.strip()

        try:
            saved = self.appointments.save(appointment)
        except SQLAlchemyError:
            logger.error('Saving appointment %s failed; undoing slot changes.', appointment_id)
            self._compensate(released=released, claimed=claimed)
            raise

        logger.info(
            'Appointment %s updated by %s %s (status %s -> %s, slot %s -> %s)',
            appointment_id, caller_role, caller_id, old_status, new_status, old_slot_id, new_slot_id,
        )
        return saved

    def cancel_appointment(self, appointment_id: int, caller_id: int) -> Appointment:
        appointment = self._get(appointment_id)
        if appointment.patient_id != caller_id:
            raise AuthorizationError('You are not authorized to cancel this appointment.')
        if appointment.status not in CANCELLABLE_STATUSES:
            raise ConflictError(f"Cannot cancel an appointment with status: '{appointment.status}'.")

        appointment.status = CANCELLED
        saved = self.appointments.save(appointment)
        self._release_after_commit(saved.slot_id, saved.id)
        logger.info('Appointment %s cancelled by patient %s', appointment_id, caller_id)
        return saved

    def delete_appointment(
        self,
        appointment_id: int,
        caller_id: int | None = None,
        caller_role: str | None = None,
    ) -> None:
        appointment = self._get(appointment_id)
        if caller_id is not None:
            self._authorize_participant(appointment, caller_id, caller_role, 'delete')

        slot_id = appointment.slot_id
        was_live = appointment.is_live
        self.appointments.delete(appointment)
        if was_live:
            self._release_after_commit(slot_id, appointment_id)
        logger.info('Appointment %s deleted', appointment_id)

    def get_appointment(self, appointment_id: int, caller_id: int, caller_role: str) -> Appointment:
        appointment = self._get(appointment_id)
        self._authorize_participant(appointment, caller_id, caller_role, 'view')
        return appointment

    def list_all_appointments(self) -> list[Appointment]:
        return self.appointments.list_for()

    def list_appointments_for(self, caller_id: int, caller_role: str, status_filter: str | None = 'upcoming') -> list[Appointment]:
        status_filter = (status_filter or 'upcoming').strip().lower()
        if status_filter not in STATUS_FILTERS:
            logger.warning('Invalid status filter provided: %s. Defaulting to upcoming.', status_filter)
            status_filter = 'upcoming'

        if status_filter == 'upcoming':
            statuses = UPCOMING_STATUSES
        elif status_filter == 'past':
            statuses = PAST_STATUSES
        elif status_filter == 'all':
            statuses = None
        else:
            statuses = (status_filter,)

        if caller_role == PATIENT:
            appointments = self.appointments.list_for(patient_id=caller_id, statuses=statuses)
        elif caller_role == DOCTOR:
            appointments = self.appointments.list_for(doctor_id=caller_id, statuses=statuses)
        else:
            appointments = self.appointments.list_for(statuses=statuses)

        now = self.clock()
        if status_filter == 'upcoming':
            appointments = [item for item in appointments if item.slot and item.slot.start_time >= now]
        elif status_filter == 'past':
            appointments = [item for item in appointments if item.slot and item.slot.start_time < now]
        return appointments

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.appointments.get(appointment_id)
        if appointment is None:
            raise NotFoundError('Appointment not found.')
        return appointment

    def _authorize_participant(self, appointment: Appointment, caller_id: int, caller_role: str | None, action: str) -> None:
        is_patient_owner = caller_role == PATIENT and appointment.patient_id == caller_id
        is_doctor_owner = caller_role == DOCTOR and appointment.doctor_id == caller_id
        if caller_role != ADMIN and not is_patient_owner and not is_doctor_owner:
            raise AuthorizationError(f'You do not have permission to {action} this appointment.')

    def _authorize_patch(self, appointment: Appointment, caller_role: str, patch: AppointmentPatch) -> None:
        if caller_role == ADMIN:
            return

        if patch.status is not None:
            if caller_role == DOCTOR:
                allowed = patch.status in (CONFIRMED, CANCELLED)
            else:
                allowed = patch.status == CANCELLED
            if not allowed or appointment.status not in CANCELLABLE_STATUSES:
                raise AuthorizationError(
                    f"Your role ({caller_role}) cannot change status to '{patch.status}' for this appointment."
                )
        if patch.slot_id is not None:
            raise AuthorizationError('You cannot change the appointment time slot.')
        if patch.service_type is not None:
            raise AuthorizationError('You cannot change the service type.')

    def _release(self, slot_id: int, released: list[int], claimed: list[int]) -> None:
        try:
            self.slots.release(slot_id)
        except SQLAlchemyError:
            self._compensate(released=released, claimed=claimed)
            raise
        released.append(slot_id)

    def _release_after_commit(self, slot_id: int, appointment_id: int) -> None:
        try:
            self.slots.release(slot_id)
        except SQLAlchemyError:
            logger.critical(
                'Appointment %s no longer holds slot %s but the slot is still marked booked. '
                'Manual reconciliation required.',
                appointment_id, slot_id, exc_info=True,
            )

    def _compensate(self, released: list[int], claimed: list[int]) -> None:
        for slot_id in claimed:
            try:
                self.slots.release(slot_id)
            except SQLAlchemyError:
                logger.critical(
                    'Failed to release slot %s after a failed appointment write. '
                    'The slot is marked booked without an appointment.',
                    slot_id, exc_info=True,
                )
        for slot_id in released:
            try:
                restored = self.slots.claim(slot_id)
            except SQLAlchemyError:
                logger.critical('Failed to re-book slot %s after a failed appointment write.', slot_id, exc_info=True)
                continue
            if not restored:
                logger.critical(
                    'Slot %s could not be re-booked for its appointment after a failed write. '
                    'Manual reconciliation required.',
                    slot_id,
                )
