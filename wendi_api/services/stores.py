"""Collaborator interfaces of the automation core.

The dispatcher, chatbot engine and rule engine only talk to these. The
service wires the SQLAlchemy implementations (``sql_stores``); tests and
local runs use the in-memory ones (``memory_stores``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from wendi_api.schemas.automation import AutomationSettings
from wendi_api.schemas.chatbot import ChatbotDefinition
from wendi_api.services.result import Result
from wendi_api.services.state_machine import ConversationState


@dataclass(frozen=True)
class OutboundMessage:
    """One message the core wants delivered to the customer."""

    text: str = ""
    link: Optional[str] = None
    file_type: str = "none"
    options: tuple[str, ...] = ()
    option_ids: tuple[str, ...] = ()
    interactive: bool = False
    source: str = "chatbot"
    node_id: Optional[str] = None
    rule_id: Optional[str] = None


@dataclass
class MessageRecord:
    conversation_id: int
    workspace_id: int
    phone: str
    role: str
    source: str
    content: str = ""
    link: Optional[str] = None
    file_type: str = "none"
    node_id: Optional[str] = None
    rule_id: Optional[str] = None
    provider_message_id: Optional[str] = None
    status: str = "pending"
    error: Optional[str] = None
    created_at: Optional[datetime] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class ConversationActivity:
    customer_messages: int = 0
    outbound_messages: int = 0
    agent_replies: int = 0
    last_outbound_at: Optional[datetime] = None


@dataclass
class SendLog:
    """Outcome of persisting and sending a batch of outbound messages."""

    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)


class BotDefinitionStore(ABC):
    @abstractmethod
    def get_published_chatbots(self, workspace_id: int) -> list[ChatbotDefinition]:
        pass

    @abstractmethod
    def get_chatbot_by_id(self, chatbot_id: int) -> Optional[ChatbotDefinition]:
        pass


class ConversationStore(ABC):
    @abstractmethod
    def load(self, conversation_id: int) -> Optional[ConversationState]:
        pass

    @abstractmethod
    def compare_and_swap(self, conversation_id: int, expected_version: int, new_state: ConversationState) -> bool:
        """Write ``new_state`` only if the stored version still equals ``expected_version``.

        A successful write stores version ``expected_version + 1``.
        """

    @abstractmethod
    def find_or_create(self, workspace_id: int, phone: str) -> tuple[ConversationState, bool]:
        """Return the conversation for a phone and whether it was just created."""


class AutomationSettingsStore(ABC):
    @abstractmethod
    def get_settings(self, workspace_id: int) -> Optional[AutomationSettings]:
        pass

    @abstractmethod
    def get_time_zone(self, workspace_id: int) -> Optional[str]:
        pass


class MessageLog(ABC):
    @abstractmethod
    def save(self, record: MessageRecord) -> int:
        pass

    @abstractmethod
    def save_inbound(self, record: MessageRecord) -> Optional[int]:
        """Save a customer message; None when its provider id was already logged."""

    @abstractmethod
    def mark_sent(self, message_id: int, provider_message_id: Optional[str]) -> None:
        pass

    @abstractmethod
    def mark_failed(self, message_id: int, error: str) -> None:
        pass

    @abstractmethod
    def has_provider_message(self, workspace_id: int, provider_message_id: str) -> bool:
        pass

    @abstractmethod
    def activity(self, conversation_id: int) -> ConversationActivity:
        pass


class Transport(ABC):
    @abstractmethod
    def send(self, workspace_id: int, phone: str, message: OutboundMessage) -> Result[str]:
        """Deliver one message; the success value is the provider message id."""


class TextGenerator(ABC):
    @abstractmethod
    def generate(self, prompt: str, context: str) -> str:
        pass
