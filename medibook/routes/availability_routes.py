from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import require_roles
from medibook.core.errors import BookingError
from medibook.database import get_db
from medibook.models.user import ADMIN, DOCTOR, PATIENT, User
from medibook.routes.common import database_unavailable, ensure_database_ready, http_error
from medibook.schemas import SlotPatch, SlotResponse, as_naive_local
from medibook.services.availability_manager import AvailabilityManager
from medibook.stores.appointment_store import AppointmentStore
from medibook.stores.slot_store import SlotStore

router = APIRouter(tags=['availability'])


class CreateSlotRequest(BaseModel):
    start_time: datetime
    end_time: datetime
    day_of_week: str

    @field_validator('start_time', 'end_time')
    @classmethod
    def drop_offset(cls, value: datetime) -> datetime:
        return as_naive_local(value)

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Day of week is required.')
        return normalized


def availability_manager(db: Session) -> AvailabilityManager:
    return AvailabilityManager(SlotStore(db), AppointmentStore(db))


@router.get('/', response_model=list[SlotResponse])
def list_slots(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN, DOCTOR)),
):
    ensure_database_ready()

    try:
        return availability_manager(db).list_slots()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/me', response_model=list[SlotResponse])
def list_my_slots(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(DOCTOR)),
):
    ensure_database_ready()

    try:
        return availability_manager(db).list_slots_for_doctor(current_user.id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctor/{doctor_id}', response_model=list[SlotResponse])
def list_doctor_slots(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN, PATIENT)),
):
    ensure_database_ready()

    try:
        return availability_manager(db).list_slots_for_doctor(doctor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{slot_id}', response_model=SlotResponse)
def get_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN, DOCTOR)),
):
    ensure_database_ready()

    try:
        slot = availability_manager(db).get_slot(slot_id)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    if current_user.role == DOCTOR and slot.doctor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Not authorized to view this availability.',
        )
    return slot


@router.post('/', response_model=SlotResponse, status_code=status.HTTP_201_CREATED)
def create_slot(
    data: CreateSlotRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(DOCTOR)),
):
    ensure_database_ready()

    try:
        return availability_manager(db).create_slot(
            doctor_id=current_user.id,
            start_time=data.start_time,
            end_time=data.end_time,
            day_of_week=data.day_of_week,
        )
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{slot_id}', response_model=SlotResponse)
def update_slot(
    slot_id: int,
    data: SlotPatch,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN, DOCTOR)),
):
    ensure_database_ready()

    try:
        return availability_manager(db).update_slot(slot_id, current_user.id, data, caller_role=current_user.role)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{slot_id}')
def delete_slot(
    slot_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(ADMIN, DOCTOR)),
):
    ensure_database_ready()

    try:
        availability_manager(db).delete_slot(slot_id, current_user.id, caller_role=current_user.role)
    except BookingError as exc:
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

    return {'message': 'Availability deleted successfully.'}
