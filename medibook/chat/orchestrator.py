"""Conversational Booking Orchestrator.

One call to ``handle_turn`` runs a full assistant turn: the patient's
message goes to the model, requested tools are dispatched in order against
the booking services, their results go back as one batch, and this repeats
until the model answers in plain text or the round limit is reached.
"""

import logging
from typing import Any

from medibook.chat.advice import extract_advice
from medibook.chat.instructions import build_system_instruction
from medibook.chat.model_client import ConversationModel, ToolResult
from medibook.chat.tools import ToolDispatcher, TurnResults, tool_declarations
from medibook.core import config
from medibook.core.errors import ExternalServiceError
from medibook.models.user import User
from medibook.schemas import ChatTurnResult
from medibook.services.availability_manager import AvailabilityManager
from medibook.services.booking import BookingStateMachine
from medibook.services.doctor_directory import DoctorDirectory

logger = logging.getLogger(__name__)

INITIAL_FAILURE_TEXT = 'Sorry, I encountered an issue communicating with the AI. Please try again later.'
FOLLOW_UP_FAILURE_TEXT = 'Sorry, I encountered an issue processing the results. Please try again.'
TOOL_LIMIT_MESSAGE = 'Tool call limit reached for this turn. Answer the user with the information you already have.'


class ConversationOrchestrator:
    def __init__(
        self,
        model: ConversationModel,
        availability: AvailabilityManager,
        booking: BookingStateMachine,
        doctors: DoctorDirectory,
        max_tool_rounds: int = config.CHAT_MAX_TOOL_ROUNDS,
    ):
        self.model = model
        self.availability = availability
        self.booking = booking
        self.doctors = doctors
        self.max_tool_rounds = max_tool_rounds

    def handle_turn(self, user: User, message: str, history: list[dict[str, Any]] | None = None) -> ChatTurnResult:
        history = history or []
        user_name = user.display_name
        session = self.model.start_chat(
            history=history,
            system_instruction=build_system_instruction(user_name),
            tool_declarations=tool_declarations(user_name),
        )

        try:
            reply = session.send_message(message)
        except ExternalServiceError as exc:
            logger.error('Initial model call failed for user %s: %s', user.id, exc.message)
            return ChatTurnResult(text=INITIAL_FAILURE_TEXT, error=f'Gemini API Error: {exc.message}', history=history)

        results = TurnResults()
        dispatcher = ToolDispatcher(user, self.availability, self.booking, self.doctors, results)

        rounds = 0
        limit_reached = False
        while reply.tool_calls and not limit_reached:
            if rounds >= self.max_tool_rounds:
                limit_reached = True
                logger.warning('User %s hit the tool round limit (%d); refusing further calls.', user.id, self.max_tool_rounds)
                tool_results = [
                    ToolResult(name=call.name, payload={'error': TOOL_LIMIT_MESSAGE, 'code': 'limit'})
                    for call in reply.tool_calls
                ]
            else:
                rounds += 1
                tool_results = [dispatcher.dispatch(call) for call in reply.tool_calls]

            logger.info('Sending %d tool results back to the model (round %d).', len(tool_results), rounds)
            try:
                reply = session.send_tool_results(tool_results)
            except ExternalServiceError as exc:
                logger.error('Model call after tool results failed for user %s: %s', user.id, exc.message)
                return ChatTurnResult(
                    text=FOLLOW_UP_FAILURE_TEXT,
                    error=f'Gemini API Error after function call: {exc.message}',
                    history=session.get_history(),
                    **results.as_dict(),
                )

        raw_text = reply.text
        if not raw_text.strip():
            logger.warning('Model returned no text for user %s; using a summary of the tool results.', user.id)
            raw_text = results.summary_text()

        text, advice = extract_advice(raw_text)
        return ChatTurnResult(
            text=text,
            advice=advice,
            history=session.get_history(),
            **results.as_dict(),
        )
