import pytest

from medibook.chat.model_client import ModelReply, ToolCall
from medibook.chat.orchestrator import (
    FOLLOW_UP_FAILURE_TEXT,
    INITIAL_FAILURE_TEXT,
    TOOL_LIMIT_MESSAGE,
    ConversationOrchestrator,
)
from medibook.core.errors import ExternalServiceError
from medibook.models.user import DOCTOR
from medibook.services.doctor_directory import DoctorDirectory


class ScriptedSession:
    """Replays canned model replies and records what was sent back."""

    def __init__(self, replies, history):
        self.replies = list(replies)
        self.history = list(history)
        self.sent_messages = []
        self.sent_results = []

    def _next(self):
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(self)
        self.history.append({'role': 'model', 'parts': [{'text': reply.text}]})
        return reply

    def send_message(self, message):
        self.sent_messages.append(message)
        self.history.append({'role': 'user', 'parts': [{'text': message}]})
        return self._next()

    def send_tool_results(self, results):
        self.sent_results.append(results)
        return self._next()

    def get_history(self):
        return list(self.history)


class ScriptedModel:
    def __init__(self, *replies):
        self.replies = replies
        self.session = None
        self.start_kwargs = None

    def start_chat(self, history, system_instruction, tool_declarations):
        self.start_kwargs = {
            'history': history,
            'system_instruction': system_instruction,
            'tool_declarations': tool_declarations,
        }
        self.session = ScriptedSession(self.replies, history)
        return self.session


@pytest.fixture
def make_orchestrator(booking_db, manager, booking):
    def factory(model, max_tool_rounds=8):
        return ConversationOrchestrator(
            model=model,
            availability=manager,
            booking=booking,
            doctors=DoctorDirectory(booking_db),
            max_tool_rounds=max_tool_rounds,
        )

    return factory


def test_plain_text_reply_ends_turn_immediately(make_orchestrator, patient) -> None:
    model = ScriptedModel(ModelReply(text='Hello Ada, how can I help?'))

    result = make_orchestrator(model).handle_turn(patient, 'hi', [])

    assert result.text == 'Hello Ada, how can I help?'
    assert result.error is None
    assert model.session.sent_results == []
    assert 'Ada Lovelace' in model.start_kwargs['system_instruction']
    assert [item['role'] for item in result.history] == ['user', 'model']


def test_heart_doctor_search_returns_doctors_with_slot_previews(make_orchestrator, patient, make_user, make_slot) -> None:
    cardiologist = make_user(DOCTOR, first_name='Cristina', last_name='Yang', specialization='Cardiologist')
    make_user(DOCTOR, first_name='Meredith', last_name='Grey', specialization='Dermatologist')
    for days_ahead in range(1, 6):
        make_slot(cardiologist.id, days_ahead=days_ahead)

    model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='findDoctors', arguments={'query': 'heart'})]),
        ModelReply(
            text='I found a heart specialist for you. [ADVICE_START]Avoid strenuous exercise until seen.[ADVICE_END]'
        ),
    )

    result = make_orchestrator(model).handle_turn(patient, 'find a heart doctor', [])

    recommendations = model.session.sent_results[0][0].payload['recommendations']
    assert [item['doctor']['specialization'] for item in recommendations] == ['Cardiologist']
    assert len(recommendations[0]['availabilitySlots']) == 3

    assert result.text == 'I found a heart specialist for you.'
    assert result.advice == 'Avoid strenuous exercise until seen.'
    assert result.doctors == recommendations


def test_booking_through_chat_marks_slot_and_hides_it_from_search(
    make_orchestrator, slot_store, patient, doctor, make_slot
) -> None:
    slot = make_slot(doctor.id)
    other = make_slot(doctor.id, hour=11)

    book_model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='createAppointment', arguments={'availabilityId': slot.id})]),
        ModelReply(text='Your appointment is booked.'),
    )
    booked = make_orchestrator(book_model).handle_turn(patient, 'book it', [])

    assert booked.created_appointment['status'] == 'scheduled'
    assert booked.created_appointment['slot_id'] == slot.id
    assert booked.created_appointment['patient_id'] == patient.id
    assert slot_store.get(slot.id).is_booked is True

    search_model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='findAvailableSlots', arguments={'doctorId': doctor.id})]),
        ModelReply(text='Here are the remaining slots.'),
    )
    searched = make_orchestrator(search_model).handle_turn(patient, 'any other times?', booked.history)

    assert [item['id'] for item in searched.slots] == [other.id]


def test_tool_failure_is_returned_to_model_not_raised(make_orchestrator, patient) -> None:
    model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='createAppointment', arguments={'availabilityId': 404})]),
        ModelReply(text='That slot does not exist, shall I look for others?'),
    )

    result = make_orchestrator(model).handle_turn(patient, 'book slot 404', [])

    payload = model.session.sent_results[0][0].payload
    assert payload['code'] == 'not_found'
    assert result.text == 'That slot does not exist, shall I look for others?'
    assert result.created_appointment is None


def test_unknown_tool_is_rejected_at_the_boundary(make_orchestrator, patient) -> None:
    model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='dropTables', arguments={})]),
        ModelReply(text='I cannot do that.'),
    )

    make_orchestrator(model).handle_turn(patient, 'do something odd', [])

    assert model.session.sent_results[0][0].payload == {'error': "Unknown tool 'dropTables'.", 'code': 'invalid_input'}


def test_initial_model_failure_returns_apology(make_orchestrator, patient) -> None:
    history = [{'role': 'user', 'parts': [{'text': 'earlier'}]}]
    model = ScriptedModel(ExternalServiceError('The AI service is unavailable.'))

    result = make_orchestrator(model).handle_turn(patient, 'hello', history)

    assert result.text == INITIAL_FAILURE_TEXT
    assert 'The AI service is unavailable.' in result.error
    assert result.history == history


def test_follow_up_model_failure_returns_apology_with_history(make_orchestrator, patient, doctor) -> None:
    model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='findAvailableSlots', arguments={'doctorId': doctor.id})]),
        ExternalServiceError('The AI service is unavailable.'),
    )

    result = make_orchestrator(model).handle_turn(patient, 'slots please', [])

    assert result.text == FOLLOW_UP_FAILURE_TEXT
    assert result.error.startswith('Gemini API Error after function call')
    assert result.slots == []
    assert len(result.history) == 2


def test_empty_final_text_falls_back_to_summary(make_orchestrator, patient, doctor, make_slot) -> None:
    make_slot(doctor.id)
    model = ScriptedModel(
        ModelReply(tool_calls=[ToolCall(name='findAvailableSlots', arguments={'doctorId': doctor.id})]),
        ModelReply(text=''),
    )

    result = make_orchestrator(model).handle_turn(patient, 'slots please', [])

    assert result.text == 'Here are the available slots:'


def test_tool_round_limit_stops_a_looping_model(make_orchestrator, patient) -> None:
    looping_call = ModelReply(tool_calls=[ToolCall(name='findMyAppointments', arguments={})])
    model = ScriptedModel(looping_call, looping_call, looping_call, looping_call, ModelReply(text='never reached'))

    result = make_orchestrator(model, max_tool_rounds=2).handle_turn(patient, 'loop', [])

    assert len(model.session.sent_results) == 3
    assert model.session.sent_results[-1][0].payload == {'error': TOOL_LIMIT_MESSAGE, 'code': 'limit'}
    assert result.appointments == []
    assert result.text == 'Okay.'
