"""Pydantic shapes shared by the routes, the services and the chat tools."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def as_naive_local(value: datetime | None) -> datetime | None:
    """Slot times are stored naive in server local time; drop any offset after converting."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class SlotResponse(BaseModel):
    id: int
    doctor_id: int
    start_time: datetime
    end_time: datetime
    day_of_week: str
    is_booked: bool

    class Config:
        from_attributes = True


class DoctorResponse(BaseModel):
    id: int
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    specialization: str | None = None
    hospital: str | None = None

    class Config:
        from_attributes = True


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    slot_id: int
    service_type: str
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    slot: SlotResponse | None = None

    class Config:
        from_attributes = True


class SlotPatch(BaseModel):
    """Fields a slot update may carry; ``None`` means "leave unchanged"."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    day_of_week: str | None = None
    is_booked: bool | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def drop_offset(cls, value: datetime | None) -> datetime | None:
        return as_naive_local(value)

    @property
    def touches_schedule(self) -> bool:
        return any(value is not None for value in (self.start_time, self.end_time, self.day_of_week))


class AppointmentPatch(BaseModel):
    """Fields an appointment update may carry; ``None`` means "leave unchanged"."""

    status: str | None = None
    slot_id: int | None = None
    service_type: str | None = None


class ChatTurnResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: str
    error: str | None = None
    advice: str | None = None
    doctors: list[dict[str, Any]] | None = None
    slots: list[dict[str, Any]] | None = None
    appointments: list[dict[str, Any]] | None = None
    created_appointment: dict[str, Any] | None = Field(default=None, alias='createdAppointment')
    updated_appointment: dict[str, Any] | None = Field(default=None, alias='updatedAppointment')
    history: list[dict[str, Any]] = Field(default_factory=list)


def slot_payload(slot) -> dict[str, Any]:
    return SlotResponse.model_validate(slot).model_dump(mode='json')


def doctor_payload(doctor) -> dict[str, Any]:
    return DoctorResponse.model_validate(doctor).model_dump(mode='json')


def appointment_payload(appointment) -> dict[str, Any]:
    return AppointmentResponse.model_validate(appointment).model_dump(mode='json')
