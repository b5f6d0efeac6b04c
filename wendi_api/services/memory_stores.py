import threading
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from wendi_api.schemas.automation import AutomationSettings
from wendi_api.schemas.chatbot import ChatbotDefinition
from wendi_api.services.state_machine import ConversationState
from wendi_api.services.stores import (
    AutomationSettingsStore,
    BotDefinitionStore,
    ConversationActivity,
    ConversationStore,
    MessageLog,
    MessageRecord,
)


class InMemoryBotStore(BotDefinitionStore):
    def __init__(self, chatbots: Optional[list[ChatbotDefinition]] = None):
        self._chatbots = {bot.id: bot for bot in chatbots or []}

    def add(self, chatbot: ChatbotDefinition) -> None:
        self._chatbots[chatbot.id] = chatbot

    def get_published_chatbots(self, workspace_id: int) -> list[ChatbotDefinition]:
        return [bot for bot in self._chatbots.values() if bot.workspace_id == workspace_id and bot.publish]

    def get_chatbot_by_id(self, chatbot_id: int) -> Optional[ChatbotDefinition]:
        return self._chatbots.get(chatbot_id)


class InMemoryConversationStore(ConversationStore):
    """Thread-safe conversation store; CAS is serialized by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._rows: dict[int, ConversationState] = {}
        self._next_id = 1

    def load(self, conversation_id: int) -> Optional[ConversationState]:
        with self._lock:
            return self._rows.get(conversation_id)

    def compare_and_swap(self, conversation_id: int, expected_version: int, new_state: ConversationState) -> bool:
        with self._lock:
            current = self._rows.get(conversation_id)
            if current is None or current.version != expected_version:
                return False
            self._rows[conversation_id] = replace(new_state, version=expected_version + 1)
            return True

    def find_or_create(self, workspace_id: int, phone: str) -> tuple[ConversationState, bool]:
        with self._lock:
            for state in self._rows.values():
                if state.workspace_id == workspace_id and state.phone == phone:
                    return state, False
            state = ConversationState(
                id=self._next_id,
                workspace_id=workspace_id,
                phone=phone,
                updated_at=datetime.now(timezone.utc),
            )
            self._rows[state.id] = state
            self._next_id += 1
            return state, True


class InMemorySettingsStore(AutomationSettingsStore):
    def __init__(self, settings: Optional[dict[int, AutomationSettings]] = None, time_zones: Optional[dict[int, str]] = None):
        self._settings = dict(settings or {})
        self._time_zones = dict(time_zones or {})

    def put(self, workspace_id: int, settings: AutomationSettings) -> None:
        self._settings[workspace_id] = settings

    def get_settings(self, workspace_id: int) -> Optional[AutomationSettings]:
        return self._settings.get(workspace_id)

    def get_time_zone(self, workspace_id: int) -> Optional[str]:
        return self._time_zones.get(workspace_id)


class InMemoryMessageLog(MessageLog):
    def __init__(self):
        self._lock = threading.Lock()
        self.records: list[MessageRecord] = []

    def save(self, record: MessageRecord) -> int:
        with self._lock:
            return self._append(record)

    def save_inbound(self, record: MessageRecord) -> Optional[int]:
        with self._lock:
            if record.provider_message_id and any(
                r.role == "customer"
                and r.workspace_id == record.workspace_id
                and r.provider_message_id == record.provider_message_id
                for r in self.records
            ):
                return None
            return self._append(record)

    def _append(self, record: MessageRecord) -> int:
        record.id = len(self.records) + 1
        if record.created_at is None:
            record.created_at = datetime.now(timezone.utc)
        self.records.append(record)
        return record.id

    def _get(self, message_id: int) -> MessageRecord:
        return self.records[message_id - 1]

    def mark_sent(self, message_id: int, provider_message_id: Optional[str]) -> None:
        record = self._get(message_id)
        record.status = "sent"
        record.provider_message_id = provider_message_id

    def mark_failed(self, message_id: int, error: str) -> None:
        record = self._get(message_id)
        record.status = "failed"
        record.error = error

    def has_provider_message(self, workspace_id: int, provider_message_id: str) -> bool:
        return any(
            r.workspace_id == workspace_id and r.provider_message_id == provider_message_id for r in self.records
        )

    def activity(self, conversation_id: int) -> ConversationActivity:
        rows = [r for r in self.records if r.conversation_id == conversation_id]
        outbound = [r for r in rows if r.role in ("bot", "agent")]
        return ConversationActivity(
            customer_messages=sum(1 for r in rows if r.role == "customer"),
            outbound_messages=len(outbound),
            agent_replies=sum(1 for r in rows if r.role == "agent"),
            last_outbound_at=max((r.created_at for r in outbound), default=None),
        )

    def for_conversation(self, conversation_id: int) -> list[MessageRecord]:
        return [r for r in self.records if r.conversation_id == conversation_id]
