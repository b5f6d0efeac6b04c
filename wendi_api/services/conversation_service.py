from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy import update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from wendi_api.errors import ConcurrentUpdateError
from wendi_api.logging_config import get_logger
from wendi_api.models import Conversation
from wendi_api.services.state_machine import ConversationState, ConversationStatus
from wendi_api.services.stores import ConversationStore

logger = get_logger("conversation_service")


def _ensure_timezone(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_state(conversation: Conversation) -> ConversationState:
    return ConversationState(
        id=conversation.id,
        workspace_id=conversation.workspace_id,
        phone=conversation.phone,
        status=ConversationStatus(conversation.status),
        assigned=bool(conversation.assigned),
        member_id=conversation.member_id,
        chatbot_id=conversation.chatbot_id,
        current_node=conversation.current_node,
        chatbot_timeout=_ensure_timezone(conversation.chatbot_timeout),
        updated_at=_ensure_timezone(conversation.updated_at),
        version=conversation.version or 0,
    )


def get_or_create_conversation(db: Session, workspace_id: int, phone: str) -> tuple[Conversation, bool]:
    """Find the conversation for a phone number or create it on first contact."""
    conversation = (
        db.query(Conversation).filter(Conversation.workspace_id == workspace_id, Conversation.phone == phone).first()
    )
    if conversation:
        return conversation, False

    now = datetime.now(timezone.utc)
    insert = pg_insert if db.get_bind().dialect.name == "postgresql" else sqlite_insert
    stmt = (
        insert(Conversation)
        .values(
            workspace_id=workspace_id,
            phone=phone,
            status=ConversationStatus.OPEN.value,
            assigned=False,
            version=0,
            created_at=now,
            updated_at=now,
        )
        .on_conflict_do_nothing(index_elements=["workspace_id", "phone"])
    )
    created = db.execute(stmt).rowcount > 0
    if not created:
        logger.info(
            "Conversation created concurrently, reusing",
            extra={"context": {"workspace_id": workspace_id, "phone": phone}},
        )

    conversation = (
        db.query(Conversation).filter(Conversation.workspace_id == workspace_id, Conversation.phone == phone).one()
    )
    return conversation, created


def compare_and_swap(db: Session, conversation_id: int, expected_version: int, new_state: ConversationState) -> bool:
    """Versioned write: succeeds only if nobody wrote since ``expected_version`` was read."""
    result = db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id, Conversation.version == expected_version)
        .values(
            status=new_state.status.value,
            assigned=new_state.assigned,
            member_id=new_state.member_id,
            chatbot_id=new_state.chatbot_id,
            current_node=new_state.current_node,
            chatbot_timeout=new_state.chatbot_timeout,
            updated_at=new_state.updated_at or datetime.now(timezone.utc),
            version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def update_with_retry(
    store: ConversationStore,
    conversation_id: int,
    mutate: Callable[[ConversationState], ConversationState],
    *,
    max_attempts: int = 3,
) -> Optional[ConversationState]:
    """Apply ``mutate`` under compare-and-swap, re-reading on conflict.

    Returns the written state, or None if the conversation does not exist.
    Raises ConcurrentUpdateError once ``max_attempts`` writes lost the race.
    """
    for attempt in range(1, max_attempts + 1):
        current = store.load(conversation_id)
        if current is None:
            return None
        new_state = mutate(current)
        new_state = _touch(new_state)
        if store.compare_and_swap(conversation_id, current.version, new_state):
            return store.load(conversation_id)
        logger.warning(
            "Conversation write conflict",
            extra={"context": {"conversation_id": conversation_id, "attempt": attempt}},
        )
    raise ConcurrentUpdateError(conversation_id, max_attempts)


def _touch(state: ConversationState) -> ConversationState:
    return replace(state, updated_at=datetime.now(timezone.utc))
