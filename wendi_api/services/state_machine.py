from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from wendi_api.errors import AutomationError


class ConversationStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


VALID_TRANSITIONS = {
    ConversationStatus.OPEN: [ConversationStatus.CLOSED],
    ConversationStatus.CLOSED: [ConversationStatus.OPEN],
}


class InvalidTransitionError(AutomationError):
    def __init__(self, from_status: ConversationStatus, to_status: ConversationStatus):
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid transition: {from_status.value} -> {to_status.value}")


@dataclass(frozen=True)
class ConversationState:
    """Snapshot of a conversation's automation state at a given version."""

    id: int
    workspace_id: int
    phone: str
    status: ConversationStatus = ConversationStatus.OPEN
    assigned: bool = False
    member_id: Optional[int] = None
    chatbot_id: Optional[int] = None
    current_node: Optional[str] = None
    chatbot_timeout: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 0

    @property
    def in_session(self) -> bool:
        return self.current_node is not None


def can_transition(from_status: ConversationStatus, to_status: ConversationStatus) -> bool:
    """Check if status transition is valid."""
    allowed = VALID_TRANSITIONS.get(from_status, [])
    return to_status in allowed


def transition(state: ConversationState, to_status: ConversationStatus) -> ConversationState:
    """Change open/closed status. Raises InvalidTransitionError if not allowed."""
    if not can_transition(state.status, to_status):
        raise InvalidTransitionError(state.status, to_status)
    return replace(state, status=to_status)


def start_session(state: ConversationState, chatbot_id: int, node_id: str) -> ConversationState:
    """Bind a chatbot and point at its start node; re-opens a closed conversation."""
    return replace(
        state,
        chatbot_id=chatbot_id,
        current_node=node_id,
        chatbot_timeout=None,
        status=ConversationStatus.OPEN,
    )


def move_to(state: ConversationState, node_id: str, timeout: Optional[datetime] = None) -> ConversationState:
    """Point the running session at another node."""
    if state.chatbot_id is None:
        raise InvalidTransitionError(state.status, state.status)
    return replace(state, current_node=node_id, chatbot_timeout=timeout)


def end_session(state: ConversationState) -> ConversationState:
    """Clear the chatbot session (completion, abort or reset)."""
    return replace(state, chatbot_id=None, current_node=None, chatbot_timeout=None)


def hand_over(state: ConversationState, member_id: Optional[int] = None) -> ConversationState:
    """Human takeover: mark assigned and stop any chatbot session."""
    ended = end_session(state)
    return replace(ended, assigned=True, member_id=member_id if member_id is not None else state.member_id)


def release(state: ConversationState) -> ConversationState:
    """Return the conversation to the unassigned queue."""
    return replace(state, assigned=False, member_id=None)


def check_invariants(state: ConversationState) -> list[str]:
    """Check state invariants. Returns the list of violations."""
    violations = []

    if (state.current_node is None) != (state.chatbot_id is None):
        violations.append("session_half_bound")

    if state.chatbot_timeout is not None and state.current_node is None:
        violations.append("timeout_without_session")

    if state.member_id is not None and not state.assigned:
        violations.append("member_without_assignment")

    return violations
