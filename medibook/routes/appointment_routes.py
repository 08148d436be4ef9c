import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import get_current_user, require_roles
from medibook.core.errors import BookingError
from medibook.database import get_db
from medibook.models.user import ADMIN, PATIENT, User
from medibook.routes.common import database_unavailable, ensure_database_ready, http_error
from medibook.schemas import AppointmentPatch, AppointmentResponse
from medibook.services.booking import BookingStateMachine
from medibook.stores.appointment_store import AppointmentStore
from medibook.stores.slot_store import SlotStore

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)


class BookAppointmentRequest(BaseModel):
    availability_id: int
    service_type: str

    @field_validator('service_type')
    @classmethod
    def validate_service_type(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Service type is required.')
        return normalized


def booking_state_machine(db: Session) -> BookingStateMachine:
    return BookingStateMachine(SlotStore(db), AppointmentStore(db))


@router.get('/', response_model=list[AppointmentResponse])
def list_appointments(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN)),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).list_all_appointments()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/me', response_model=list[AppointmentResponse])
def list_my_appointments(
    status_filter: str = Query('upcoming', alias='status'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).list_appointments_for(current_user.id, current_user.role, status_filter)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).get_appointment(appointment_id, current_user.id, current_user.role)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def book_appointment(
    data: BookAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(PATIENT)),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).book_slot(data.availability_id, current_user.id, data.service_type)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Booking slot %s failed for patient %s', data.availability_id, current_user.id)
        raise database_unavailable() from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: AppointmentPatch,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).update_appointment(appointment_id, current_user.id, current_user.role, data)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(PATIENT)),
):
    ensure_database_ready()

    try:
        return booking_state_machine(db).cancel_appointment(appointment_id, current_user.id)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}')
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    ensure_database_ready()

    try:
        booking_state_machine(db).delete_appointment(appointment_id, current_user.id, current_user.role)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return {'message': 'Appointment deleted successfully.'}
