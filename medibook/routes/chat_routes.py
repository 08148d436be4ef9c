import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from medibook.auth.dependencies import require_roles
from medibook.chat.model_client import get_conversation_model
from medibook.chat.orchestrator import ConversationOrchestrator
from medibook.core.errors import BookingError
from medibook.database import get_db
from medibook.models.user import PATIENT, User
from medibook.routes.common import database_unavailable, ensure_database_ready, http_error
from medibook.schemas import ChatTurnResult
from medibook.services.availability_manager import AvailabilityManager
from medibook.services.booking import BookingStateMachine
from medibook.services.doctor_directory import DoctorDirectory
from medibook.stores.appointment_store import AppointmentStore
from medibook.stores.slot_store import SlotStore

router = APIRouter(tags=['chat'])

logger = logging.getLogger(__name__)


class ChatRequest(BaseModel):
    message: str
    history: list[dict[str, Any]] = Field(default_factory=list)


def conversation_orchestrator(db: Session) -> ConversationOrchestrator:
    slots = SlotStore(db)
    appointments = AppointmentStore(db)
    return ConversationOrchestrator(
        model=get_conversation_model(),
        availability=AvailabilityManager(slots, appointments),
        booking=BookingStateMachine(slots, appointments),
        doctors=DoctorDirectory(db),
    )


@router.post('/', response_model=ChatTurnResult, response_model_by_alias=True, response_model_exclude_none=True)
def chat(
    data: ChatRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles(PATIENT)),
):
    message = data.message.strip()
    if not message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Message cannot be empty.',
        )

    ensure_database_ready()

    try:
        orchestrator = conversation_orchestrator(db)
        return orchestrator.handle_turn(current_user, message, data.history)
    except BookingError as exc:
        logger.warning('Chat turn for user %s rejected: %s', current_user.id, exc.message)
        raise http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
