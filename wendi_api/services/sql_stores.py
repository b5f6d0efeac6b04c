from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from wendi_api.errors import GraphValidationError
from wendi_api.logging_config import get_logger
from wendi_api.models import AutomationSettings as AutomationSettingsRow
from wendi_api.models import Chatbot, Conversation, Workspace
from wendi_api.schemas.automation import AutomationSettings
from wendi_api.schemas.bot_graph import parse_bot_graph
from wendi_api.schemas.chatbot import ChatbotDefinition
from wendi_api.services import conversation_service, message_service
from wendi_api.services.state_machine import ConversationState
from wendi_api.services.stores import (
    AutomationSettingsStore,
    BotDefinitionStore,
    ConversationActivity,
    ConversationStore,
    MessageLog,
    MessageRecord,
)

logger = get_logger("sql_stores")


def to_definition(chatbot: Chatbot) -> ChatbotDefinition:
    return ChatbotDefinition(
        id=chatbot.id,
        workspace_id=chatbot.workspace_id,
        name=chatbot.name or "",
        trigger=chatbot.trigger,
        default=bool(chatbot.default),
        publish=bool(chatbot.publish),
        graph=parse_bot_graph(chatbot.bot or {}),
    )


class SqlBotDefinitionStore(BotDefinitionStore):
    def __init__(self, db: Session):
        self.db = db

    def _definition_or_none(self, chatbot: Chatbot) -> Optional[ChatbotDefinition]:
        try:
            return to_definition(chatbot)
        except GraphValidationError as e:
            logger.warning(
                "Stored chatbot graph is invalid, ignoring chatbot",
                extra={"context": {"chatbot_id": chatbot.id, "error": str(e)}},
            )
            return None

    def get_published_chatbots(self, workspace_id: int) -> list[ChatbotDefinition]:
        rows = (
            self.db.query(Chatbot)
            .filter(Chatbot.workspace_id == workspace_id, Chatbot.publish == True)  # noqa: E712
            .order_by(Chatbot.id)
            .all()
        )
        definitions = [self._definition_or_none(row) for row in rows]
        return [definition for definition in definitions if definition is not None]

    def get_chatbot_by_id(self, chatbot_id: int) -> Optional[ChatbotDefinition]:
        chatbot = self.db.get(Chatbot, chatbot_id)
        if chatbot is None:
            return None
        return self._definition_or_none(chatbot)


class SqlConversationStore(ConversationStore):
    def __init__(self, db: Session):
        self.db = db

    def load(self, conversation_id: int) -> Optional[ConversationState]:
        # CAS writes bypass the identity map, so always refresh from the row.
        conversation = self.db.get(Conversation, conversation_id, populate_existing=True)
        if conversation is None:
            return None
        return conversation_service.to_state(conversation)

    def compare_and_swap(self, conversation_id: int, expected_version: int, new_state: ConversationState) -> bool:
        return conversation_service.compare_and_swap(self.db, conversation_id, expected_version, new_state)

    def find_or_create(self, workspace_id: int, phone: str) -> tuple[ConversationState, bool]:
        conversation, created = conversation_service.get_or_create_conversation(self.db, workspace_id, phone)
        return conversation_service.to_state(conversation), created


def _rules_as_list(raw) -> list:
    # Older rows keep the rules as an object keyed by rule id.
    if isinstance(raw, dict):
        return list(raw.values())
    return list(raw or [])


class SqlAutomationSettingsStore(AutomationSettingsStore):
    def __init__(self, db: Session):
        self.db = db

    def get_settings(self, workspace_id: int) -> Optional[AutomationSettings]:
        row = self.db.get(AutomationSettingsRow, workspace_id)
        if row is None:
            return None
        try:
            return AutomationSettings.model_validate(
                {
                    "holidayMode": bool(row.holiday_mode),
                    "workingHours": row.working_hours or [],
                    "automationRules": _rules_as_list(row.automation_rules),
                }
            )
        except ValidationError as e:
            logger.error(
                "Stored automation settings are invalid, automation disabled",
                extra={"context": {"workspace_id": workspace_id, "error": str(e)}},
            )
            return None

    def get_time_zone(self, workspace_id: int) -> Optional[str]:
        workspace = self.db.get(Workspace, workspace_id)
        return workspace.time_zone if workspace else None


class SqlMessageLog(MessageLog):
    def __init__(self, db: Session):
        self.db = db

    def save(self, record: MessageRecord) -> int:
        return message_service.save_message(self.db, record).id

    def save_inbound(self, record: MessageRecord) -> Optional[int]:
        return message_service.save_inbound_message(self.db, record)

    def mark_sent(self, message_id: int, provider_message_id: Optional[str]) -> None:
        message_service.mark_message_sent(self.db, message_id, provider_message_id)

    def mark_failed(self, message_id: int, error: str) -> None:
        message_service.mark_message_failed(self.db, message_id, error)

    def has_provider_message(self, workspace_id: int, provider_message_id: str) -> bool:
        return message_service.find_by_provider_id(self.db, workspace_id, provider_message_id) is not None

    def activity(self, conversation_id: int) -> ConversationActivity:
        return message_service.conversation_activity(self.db, conversation_id)
