"""Gemini client for the booking assistant.

The orchestrator talks to the model through ``ConversationModel`` and
``ChatSession``; this module holds the Gemini implementation of both and
normalises its replies into ``ModelReply`` so nothing above it imports the
SDK.
"""

import logging
from functools import lru_cache
from typing import Any, Protocol

import httpx
from google import genai
from google.genai import errors, types
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from medibook.core import config
from medibook.core.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

_HISTORY_ROLES = {'user': 'user', 'model': 'model', 'assistant': 'model'}

_SAFETY_CATEGORIES = (
    types.HarmCategory.HARM_CATEGORY_HARASSMENT,
    types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
    types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
    types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
)


class ToolCall(BaseModel):
    """A function call requested by the model."""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ModelReply(BaseModel):
    text: str = ''
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ToolResult(BaseModel):
    name: str
    payload: dict[str, Any]


class ChatSession(Protocol):
    def send_message(self, message: str) -> ModelReply: ...

    def send_tool_results(self, results: list[ToolResult]) -> ModelReply: ...

    def get_history(self) -> list[dict[str, Any]]: ...


class ConversationModel(Protocol):
    def start_chat(
        self,
        history: list[dict[str, Any]],
        system_instruction: str,
        tool_declarations: list[dict[str, Any]],
    ) -> ChatSession: ...


def normalize_history(history: list[Any] | None) -> list[dict[str, Any]]:
    """Coerce client-supplied history into Gemini ``Content`` dicts.

    Accepts ``{"role": ..., "parts": [{"text": ...}]}`` entries as returned
    by a previous turn, plus the shorthand ``{"role": ..., "text": ...}`` and
    plain string parts. ``assistant`` is treated as ``model``.
    """
    if not history:
        return []
    if not isinstance(history, list):
        raise ValidationError('Invalid history format.')

    normalized = []
    for entry in history:
        if not isinstance(entry, dict):
            raise ValidationError('Invalid history format.')

        role = _HISTORY_ROLES.get(str(entry.get('role', '')).lower())
        if role is None:
            raise ValidationError('Invalid history format.')

        parts = entry.get('parts')
        if parts is None and 'text' in entry:
            parts = [entry['text']]
        if not isinstance(parts, list) or not parts:
            raise ValidationError('Invalid history format.')

        normalized.append({
            'role': role,
            'parts': [{'text': part} if isinstance(part, str) else part for part in parts],
        })
    return normalized


def _reply_from_response(response: Any) -> ModelReply:
    candidates = getattr(response, 'candidates', None) or []
    if not candidates or candidates[0].content is None or not candidates[0].content.parts:
        logger.warning('Model returned no content parts.')
        return ModelReply()

    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    for part in candidates[0].content.parts:
        if getattr(part, 'thought', None):
            continue
        if part.function_call:
            tool_calls.append(ToolCall(name=part.function_call.name, arguments=dict(part.function_call.args or {})))
        elif part.text:
            text_parts.append(part.text)

    return ModelReply(text=''.join(text_parts), tool_calls=tool_calls)


class GeminiChatSession:
    def __init__(self, chat: Any):
        self._chat = chat

    def send_message(self, message: str) -> ModelReply:
        return self._send(message)

    def send_tool_results(self, results: list[ToolResult]) -> ModelReply:
        parts = [
            types.Part.from_function_response(name=result.name, response=result.payload)
            for result in results
        ]
        return self._send(parts)

    def get_history(self) -> list[dict[str, Any]]:
        return [content.model_dump(mode='json', exclude_none=True) for content in self._chat.get_history()]

    def _send(self, message: Any) -> ModelReply:
        try:
            response = self._chat.send_message(message)
        except (errors.APIError, httpx.HTTPError) as exc:
            logger.error('Gemini request failed: %s', exc)
            raise ExternalServiceError('The AI service is unavailable.') from exc
        except Exception as exc:
            logger.exception('Unexpected error from the Gemini SDK')
            raise ExternalServiceError('The AI service is unavailable.') from exc
        return _reply_from_response(response)


class GeminiConversationModel:
    def __init__(
        self,
        api_key: str = config.GEMINI_API_KEY,
        model_name: str = config.GEMINI_MODEL,
        temperature: float = config.CHAT_TEMPERATURE,
        safety_filters: bool = config.CHAT_SAFETY_FILTERS,
    ):
        if not api_key:
            raise ExternalServiceError('GEMINI_API_KEY is not configured.')

        self.client = genai.Client(api_key=api_key)
        self.model_name = model_name
        self.temperature = temperature
        self.safety_filters = safety_filters
        logger.info('Gemini conversation model initialised: %s', model_name)

    def start_chat(
        self,
        history: list[dict[str, Any]],
        system_instruction: str,
        tool_declarations: list[dict[str, Any]],
    ) -> GeminiChatSession:
        try:
            contents = [types.Content.model_validate(item) for item in normalize_history(history)]
        except PydanticValidationError as exc:
            raise ValidationError('Invalid history format.') from exc

        chat = self.client.chats.create(
            model=self.model_name,
            config=self._build_config(system_instruction, tool_declarations),
            history=contents,
        )
        return GeminiChatSession(chat)

    def _build_config(self, system_instruction: str, tool_declarations: list[dict[str, Any]]) -> types.GenerateContentConfig:
        declarations = [types.FunctionDeclaration(**declaration) for declaration in tool_declarations]
        safety_settings = None
        if self.safety_filters:
            safety_settings = [
                types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE)
                for category in _SAFETY_CATEGORIES
            ]

        return types.GenerateContentConfig(
            temperature=self.temperature,
            system_instruction=system_instruction,
            tools=[types.Tool(function_declarations=declarations)],
            automatic_function_calling=types.AutomaticFunctionCallingConfig(disable=True),
            safety_settings=safety_settings,
        )


@lru_cache
def get_conversation_model() -> GeminiConversationModel:
    return GeminiConversationModel(
        api_key=config.GEMINI_API_KEY,
        model_name=config.GEMINI_MODEL,
        temperature=config.CHAT_TEMPERATURE,
        safety_filters=config.CHAT_SAFETY_FILTERS,
    )
