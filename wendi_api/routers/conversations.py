from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from wendi_api.config import settings
from wendi_api.database import get_db
from wendi_api.errors import ConcurrentUpdateError
from wendi_api.logging_config import get_logger
from wendi_api.schemas.conversation import AssignRequest, ConversationResponse, StatusRequest
from wendi_api.services.conversation_service import update_with_retry
from wendi_api.services.sql_stores import SqlConversationStore
from wendi_api.services.state_machine import (
    ConversationState,
    ConversationStatus,
    InvalidTransitionError,
    end_session,
    hand_over,
    release,
    transition,
)

logger = get_logger("conversations")

router = APIRouter(prefix="/conversations", tags=["conversations"])


def _to_response(state: ConversationState) -> ConversationResponse:
    return ConversationResponse(
        id=state.id,
        workspace_id=state.workspace_id,
        phone=state.phone,
        status=state.status.value,
        assigned=state.assigned,
        member_id=state.member_id,
        chatbot_id=state.chatbot_id,
        current_node=state.current_node,
        chatbot_timeout=state.chatbot_timeout,
        updated_at=state.updated_at,
        version=state.version,
    )


def _apply(db: Session, conversation_id: int, mutate: Callable[[ConversationState], ConversationState]):
    store = SqlConversationStore(db)
    try:
        state = update_with_retry(store, conversation_id, mutate, max_attempts=settings.dispatch_max_attempts)
    except ConcurrentUpdateError as e:
        db.rollback()
        raise HTTPException(status_code=503, detail=str(e))
    except InvalidTransitionError as e:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(e))

    if state is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    db.commit()
    return _to_response(state)


@router.get("/{conversation_id}", response_model=ConversationResponse)
def get_conversation(conversation_id: int, db: Session = Depends(get_db)):
    state = SqlConversationStore(db).load(conversation_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Conversation {conversation_id} not found")
    return _to_response(state)


@router.post("/{conversation_id}/assign", response_model=ConversationResponse)
def assign_conversation(conversation_id: int, request: AssignRequest, db: Session = Depends(get_db)):
    """Human takeover. Stops any running chatbot session."""
    logger.info("Assigning conversation", extra={"context": {"conversation_id": conversation_id}})
    return _apply(db, conversation_id, lambda state: hand_over(state, request.member_id))


@router.post("/{conversation_id}/unassign", response_model=ConversationResponse)
def unassign_conversation(conversation_id: int, db: Session = Depends(get_db)):
    return _apply(db, conversation_id, release)


@router.post("/{conversation_id}/reset", response_model=ConversationResponse)
def reset_chatbot_session(conversation_id: int, db: Session = Depends(get_db)):
    """Drop the chatbot session; the next message is matched against triggers again."""
    return _apply(db, conversation_id, end_session)


@router.put("/{conversation_id}/status", response_model=ConversationResponse)
def set_conversation_status(conversation_id: int, request: StatusRequest, db: Session = Depends(get_db)):
    target = ConversationStatus(request.status)

    def mutate(state: ConversationState) -> ConversationState:
        if state.status == target:
            return state
        return transition(state, target)

    return _apply(db, conversation_id, mutate)
