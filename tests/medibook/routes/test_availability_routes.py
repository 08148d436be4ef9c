from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from medibook.models.user import ADMIN, DOCTOR
from medibook.routes import availability_routes
from medibook.routes.availability_routes import (
    CreateSlotRequest,
    create_slot,
    delete_slot,
    get_slot,
    list_doctor_slots,
    list_my_slots,
    update_slot,
)
from medibook.schemas import SlotPatch

START = datetime(2030, 1, 8, 9, 0)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(availability_routes, 'ensure_database_ready', lambda: None)


def _request(start: datetime = START) -> CreateSlotRequest:
    return CreateSlotRequest(start_time=start, end_time=start + timedelta(minutes=30), day_of_week='Tuesday')


def test_create_slot_request_rejects_blank_day() -> None:
    with pytest.raises(ValidationError):
        CreateSlotRequest(start_time=START, end_time=START + timedelta(minutes=30), day_of_week='  ')


def test_create_slot_uses_authenticated_doctor(booking_db, doctor) -> None:
    slot = create_slot(data=_request(), db=booking_db, current_user=doctor)

    assert slot.doctor_id == doctor.id
    assert slot.is_booked is False


def test_create_slot_returns_409_for_nearby_slot(booking_db, doctor) -> None:
    create_slot(data=_request(), db=booking_db, current_user=doctor)

    with pytest.raises(HTTPException) as exception_info:
        create_slot(data=_request(START + timedelta(minutes=3)), db=booking_db, current_user=doctor)

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Cannot create availability within 5 minutes of an existing time slot.'


def test_create_slot_returns_400_for_bad_day(booking_db, doctor) -> None:
    data = CreateSlotRequest(start_time=START, end_time=START + timedelta(minutes=30), day_of_week='Someday')

    with pytest.raises(HTTPException) as exception_info:
        create_slot(data=data, db=booking_db, current_user=doctor)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid day of week.'


def test_create_slot_accepts_mixed_offset_and_naive_times(booking_db, doctor) -> None:
    start = datetime(2030, 1, 8, 8, 0, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)
    data = CreateSlotRequest.model_validate({
        'start_time': '2030-01-08T08:00:00Z',
        'end_time': (start + timedelta(minutes=30)).isoformat(),
        'day_of_week': 'Tuesday',
    })

    slot = create_slot(data=data, db=booking_db, current_user=doctor)

    assert slot.start_time == start
    assert slot.end_time == start + timedelta(minutes=30)


def test_update_slot_returns_403_for_other_doctor(booking_db, doctor, make_user) -> None:
    other_doctor = make_user(DOCTOR)
    slot = create_slot(data=_request(), db=booking_db, current_user=doctor)

    with pytest.raises(HTTPException) as exception_info:
        update_slot(slot_id=slot.id, data=SlotPatch(is_booked=True), db=booking_db, current_user=other_doctor)

    assert exception_info.value.status_code == 403


def test_get_slot_hides_other_doctors_slot(booking_db, doctor, make_user) -> None:
    other_doctor = make_user(DOCTOR)
    slot = create_slot(data=_request(), db=booking_db, current_user=doctor)

    with pytest.raises(HTTPException) as exception_info:
        get_slot(slot_id=slot.id, db=booking_db, current_user=other_doctor)

    assert exception_info.value.status_code == 403


def test_get_slot_returns_404_when_missing(booking_db, make_user) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_slot(slot_id=42, db=booking_db, current_user=make_user(ADMIN))

    assert exception_info.value.status_code == 404
    assert exception_info.value.detail == 'Availability not found.'


def test_list_slots_for_doctor_and_me(booking_db, doctor, patient) -> None:
    slot = create_slot(data=_request(), db=booking_db, current_user=doctor)

    assert [item.id for item in list_my_slots(db=booking_db, current_user=doctor)] == [slot.id]
    assert [item.id for item in list_doctor_slots(doctor_id=doctor.id, db=booking_db, current_user=patient)] == [slot.id]


def test_delete_slot_by_admin(booking_db, doctor, make_user) -> None:
    slot = create_slot(data=_request(), db=booking_db, current_user=doctor)

    response = delete_slot(slot_id=slot.id, db=booking_db, current_user=make_user(ADMIN))

    assert response == {'message': 'Availability deleted successfully.'}
    assert list_my_slots(db=booking_db, current_user=doctor) == []
