import pytest
from fastapi import HTTPException

from medibook.chat.model_client import ModelReply, get_conversation_model, normalize_history
from medibook.core import config
from medibook.routes import chat_routes
from medibook.routes.chat_routes import ChatRequest, chat


class EchoSession:
    def __init__(self, history):
        self.history = list(history)

    def send_message(self, message):
        self.history.append({'role': 'user', 'parts': [{'text': message}]})
        self.history.append({'role': 'model', 'parts': [{'text': f'You said: {message}'}]})
        return ModelReply(text=f'You said: {message}')

    def send_tool_results(self, results):
        raise AssertionError('no tools expected')

    def get_history(self):
        return self.history


class EchoModel:
    def start_chat(self, history, system_instruction, tool_declarations):
        return EchoSession(history)


@pytest.fixture(autouse=True)
def skip_schema_check(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(chat_routes, 'ensure_database_ready', lambda: None)


def test_chat_rejects_blank_message(booking_db, patient) -> None:
    with pytest.raises(HTTPException) as exception_info:
        chat(data=ChatRequest(message='   '), db=booking_db, current_user=patient)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Message cannot be empty.'


def test_chat_returns_turn_result(booking_db, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(chat_routes, 'get_conversation_model', lambda: EchoModel())

    result = chat(data=ChatRequest(message=' hello '), db=booking_db, current_user=patient)

    assert result.text == 'You said: hello'
    assert len(result.history) == 2


def test_chat_rejects_malformed_history(booking_db, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    class StrictModel(EchoModel):
        def start_chat(self, history, system_instruction, tool_declarations):
            normalize_history(history)
            return super().start_chat(history, system_instruction, tool_declarations)

    monkeypatch.setattr(chat_routes, 'get_conversation_model', lambda: StrictModel())

    with pytest.raises(HTTPException) as exception_info:
        chat(data=ChatRequest(message='hi', history=[{'role': 'robot'}]), db=booking_db, current_user=patient)

    assert exception_info.value.status_code == 400
    assert exception_info.value.detail == 'Invalid history format.'


def test_chat_without_api_key_is_unavailable(booking_db, patient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(config, 'GEMINI_API_KEY', '')
    get_conversation_model.cache_clear()

    with pytest.raises(HTTPException) as exception_info:
        chat(data=ChatRequest(message='hi'), db=booking_db, current_user=patient)

    assert exception_info.value.status_code == 503
