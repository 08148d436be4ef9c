"""Tools the booking assistant may call, and their dispatch.

Every tool is a pydantic command model tagged by ``name``. Calls are parsed
against that closed set before anything runs: unknown names and unexpected
arguments (a patient id, for instance) are rejected. Handlers always act as
the authenticated user the dispatcher was built for.
"""

import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from medibook.chat.model_client import ToolCall, ToolResult
from medibook.core import config
from medibook.core.errors import BookingError, ValidationError
from medibook.models.user import User
from medibook.schemas import appointment_payload, doctor_payload, slot_payload
from medibook.services.availability_manager import AvailabilityManager
from medibook.services.booking import BookingStateMachine
from medibook.services.doctor_directory import DoctorDirectory

logger = logging.getLogger(__name__)


class ToolCommand(BaseModel):
    model_config = ConfigDict(extra='forbid', populate_by_name=True)


class FindDoctors(ToolCommand):
    name: Literal['findDoctors']
    query: str | None = None


class FindAvailableSlots(ToolCommand):
    name: Literal['findAvailableSlots']
    doctor_id: int = Field(alias='doctorId')


class CreateAppointment(ToolCommand):
    name: Literal['createAppointment']
    availability_id: int = Field(alias='availabilityId')
    service_type: str = Field(default='Consultation', alias='serviceType')


class FindMyAppointments(ToolCommand):
    name: Literal['findMyAppointments']
    status: str = 'upcoming'


class CancelAppointment(ToolCommand):
    name: Literal['cancelAppointment']
    appointment_id: int = Field(alias='appointmentId')


Command = Annotated[
    Union[FindDoctors, FindAvailableSlots, CreateAppointment, FindMyAppointments, CancelAppointment],
    Field(discriminator='name'),
]

_command_adapter = TypeAdapter(Command)

TOOL_NAMES = ('findDoctors', 'findAvailableSlots', 'createAppointment', 'findMyAppointments', 'cancelAppointment')


def parse_tool_call(call: ToolCall) -> Command:
    if call.name not in TOOL_NAMES:
        raise ValidationError(f"Unknown tool '{call.name}'.")
    if 'name' in call.arguments:
        raise ValidationError(f"Unexpected argument 'name' for tool '{call.name}'.")

    try:
        return _command_adapter.validate_python({'name': call.name, **call.arguments})
    except PydanticValidationError as exc:
        problems = '; '.join(
            f"{'.'.join(str(loc) for loc in error['loc'][1:]) or 'arguments'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid arguments for tool '{call.name}': {problems}") from exc


def tool_declarations(user_name: str) -> list[dict[str, Any]]:
    """Function declarations handed to the model, in Gemini schema form."""
    return [
        {
            'name': 'findDoctors',
            'description': (
                'Search for doctors by symptom, specialty, name or hospital. '
                'Returns matching doctors with a few of their upcoming open slots.'
            ),
            'parameters': {
                'type': 'OBJECT',
                'properties': {
                    'query': {
                        'type': 'STRING',
                        'description': "Symptom, specialty or doctor name, e.g. 'heart', 'Dermatologist', 'Dr. Smith'.",
                    },
                },
            },
        },
        {
            'name': 'findAvailableSlots',
            'description': 'List the upcoming open appointment slots of one doctor.',
            'parameters': {
                'type': 'OBJECT',
                'properties': {
                    'doctorId': {'type': 'INTEGER', 'description': 'Doctor id taken from a findDoctors result.'},
                },
                'required': ['doctorId'],
            },
        },
        {
            'name': 'createAppointment',
            'description': f'Book an open slot for {user_name}. Only call this once the user has chosen a slot.',
            'parameters': {
                'type': 'OBJECT',
                'properties': {
                    'availabilityId': {'type': 'INTEGER', 'description': 'Id of the slot to book.'},
                    'serviceType': {'type': 'STRING', 'description': "Reason for the visit. Defaults to 'Consultation'."},
                },
                'required': ['availabilityId'],
            },
        },
        {
            'name': 'findMyAppointments',
            'description': f"List {user_name}'s appointments.",
            'parameters': {
                'type': 'OBJECT',
                'properties': {
                    'status': {
                        'type': 'STRING',
                        'description': "'upcoming' (default), 'past', 'all', or a status such as 'scheduled' or 'cancelled'.",
                    },
                },
            },
        },
        {
            'name': 'cancelAppointment',
            'description': f"Cancel one of {user_name}'s scheduled or confirmed appointments.",
            'parameters': {
                'type': 'OBJECT',
                'properties': {
                    'appointmentId': {'type': 'INTEGER', 'description': 'Id of the appointment to cancel.'},
                },
                'required': ['appointmentId'],
            },
        },
    ]


class TurnResults:
    """Structured data gathered during one turn.

    Each key keeps only the latest successful payload of its kind.
    """

    def __init__(self):
        self.doctors: list[dict[str, Any]] | None = None
        self.slots: list[dict[str, Any]] | None = None
        self.created_appointment: dict[str, Any] | None = None
        self.appointments: list[dict[str, Any]] | None = None
        self.updated_appointment: dict[str, Any] | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            'doctors': self.doctors,
            'slots': self.slots,
            'created_appointment': self.created_appointment,
            'appointments': self.appointments,
            'updated_appointment': self.updated_appointment,
        }

    def summary_text(self) -> str:
        if self.created_appointment:
            return 'Okay, the appointment is booked. See details below.'
        if self.doctors:
            return 'Here are the doctors I found:'
        if self.slots:
            return 'Here are the available slots:'
        if self.appointments:
            return 'Here are your appointments:'
        if self.updated_appointment and self.updated_appointment.get('status') == 'cancelled':
            return 'Okay, the appointment has been cancelled.'
        return 'Okay.'


class ToolDispatcher:
    def __init__(
        self,
        user: User,
        availability: AvailabilityManager,
        booking: BookingStateMachine,
        doctors: DoctorDirectory,
        results: TurnResults,
    ):
        self.user = user
        self.availability = availability
        self.booking = booking
        self.doctors = doctors
        self.results = results
        self._handlers = {
            FindDoctors: self._find_doctors,
            FindAvailableSlots: self._find_available_slots,
            CreateAppointment: self._create_appointment,
            FindMyAppointments: self._find_my_appointments,
            CancelAppointment: self._cancel_appointment,
        }

    def dispatch(self, call: ToolCall) -> ToolResult:
        logger.info('Executing tool %s for user %s with args %s', call.name, self.user.id, call.arguments)
        try:
            command = parse_tool_call(call)
            payload = self._handlers[type(command)](command)
        except BookingError as exc:
            logger.info('Tool %s failed: %s', call.name, exc.message)
            payload = {'error': exc.message, 'code': exc.code}
        except SQLAlchemyError:
            logger.exception('Database error while executing tool %s', call.name)
            payload = {'error': f'The booking database is unavailable while executing {call.name}.', 'code': 'internal'}
        except Exception as exc:
            logger.exception('Unexpected error while executing tool %s', call.name)
            payload = {'error': f'An internal error occurred while executing {call.name}. {exc}', 'code': 'internal'}
        return ToolResult(name=call.name, payload=payload)

    def _find_doctors(self, command: FindDoctors) -> dict[str, Any]:
        recommendations = []
        for doctor in self.doctors.find_doctors(command.query):
            preview = self.availability.list_open_slots(doctor.id, limit=config.SLOT_PREVIEW_LIMIT)
            recommendations.append({
                'doctor': doctor_payload(doctor),
                'availabilitySlots': [slot_payload(slot) for slot in preview],
            })
        self.results.doctors = recommendations
        return {'recommendations': recommendations}

    def _find_available_slots(self, command: FindAvailableSlots) -> dict[str, Any]:
        if self.doctors.get_doctor(command.doctor_id) is None:
            return {'error': 'Doctor not found.', 'code': 'not_found'}
        slots = [slot_payload(slot) for slot in self.availability.list_open_slots(command.doctor_id)]
        self.results.slots = slots
        return {'foundSlots': slots}

    def _create_appointment(self, command: CreateAppointment) -> dict[str, Any]:
        appointment = self.booking.book_slot(command.availability_id, self.user.id, command.service_type)
        created = appointment_payload(appointment)
        self.results.created_appointment = created
        return {'createdAppointment': created}

    def _find_my_appointments(self, command: FindMyAppointments) -> dict[str, Any]:
        found = [
            appointment_payload(appointment)
            for appointment in self.booking.list_appointments_for(self.user.id, self.user.role, command.status)
        ]
        self.results.appointments = found
        return {'foundAppointments': found}

    def _cancel_appointment(self, command: CancelAppointment) -> dict[str, Any]:
        appointment = self.booking.cancel_appointment(command.appointment_id, self.user.id)
        updated = appointment_payload(appointment)
        self.results.updated_appointment = updated
        return {'success': True, 'message': 'Appointment cancelled successfully.', 'updatedAppointment': updated}
