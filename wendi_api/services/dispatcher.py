"""Single entry point for inbound customer messages.

Order of precedence per message: chatbot engine, then automation rules,
otherwise the conversation waits for a human. The decision and the state
write happen under compare-and-swap; sending happens after the write.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional

from wendi_api.config import settings
from wendi_api.errors import AutomationError, ConcurrentUpdateError
from wendi_api.logging_config import ConversationLogger, get_logger
from wendi_api.services.automation_service import AutomationRuleEngine
from wendi_api.services.chatbot_engine import ChatbotEngine, ChatbotOutcome
from wendi_api.services.result import Result
from wendi_api.services.state_machine import ConversationState, check_invariants, end_session
from wendi_api.services.stores import (
    AutomationSettingsStore,
    ConversationStore,
    MessageLog,
    MessageRecord,
    OutboundMessage,
    SendLog,
    Transport,
)

logger = get_logger("dispatcher")


@dataclass(frozen=True)
class DispatchResult:
    action: str  # chatbot, automation, human, duplicate
    sent: int = 0
    conversation_id: Optional[int] = None


@dataclass
class _Plan:
    action: str
    state: ConversationState
    messages: list[OutboundMessage] = field(default_factory=list)


class Dispatcher:
    def __init__(
        self,
        *,
        conversations: ConversationStore,
        messages: MessageLog,
        settings_store: AutomationSettingsStore,
        transport: Transport,
        engine: ChatbotEngine,
        rules: AutomationRuleEngine,
        max_attempts: Optional[int] = None,
    ):
        self.conversations = conversations
        self.messages = messages
        self.settings_store = settings_store
        self.transport = transport
        self.engine = engine
        self.rules = rules
        self.max_attempts = max_attempts or settings.dispatch_max_attempts

    def receive(
        self,
        workspace_id: int,
        phone: str,
        text: str,
        is_interactive: bool = False,
        *,
        reply_id: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        file_type: str = "none",
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        """Find or create the conversation for ``phone`` and handle the message."""
        if provider_message_id and self.messages.has_provider_message(workspace_id, provider_message_id):
            logger.info(
                "Duplicate inbound message dropped",
                extra={"context": {"workspace_id": workspace_id, "provider_message_id": provider_message_id}},
            )
            return DispatchResult(action="duplicate")

        conversation, created = self.conversations.find_or_create(workspace_id, phone)
        if created:
            logger.info(
                "Conversation created",
                extra={"context": {"workspace_id": workspace_id, "conversation_id": conversation.id}},
            )
        return self.handle(
            conversation,
            text,
            is_interactive,
            reply_id=reply_id,
            provider_message_id=provider_message_id,
            file_type=file_type,
            now=now,
        )

    def handle(
        self,
        conversation: ConversationState,
        text: str,
        is_interactive: bool = False,
        *,
        reply_id: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        file_type: str = "none",
        now: Optional[datetime] = None,
    ) -> DispatchResult:
        now = now or datetime.now(timezone.utc)
        text = text or ""
        log = ConversationLogger(logger, {"conversation_id": conversation.id, "workspace_id": conversation.workspace_id})

        inbound_id = self.messages.save_inbound(
            MessageRecord(
                conversation_id=conversation.id,
                workspace_id=conversation.workspace_id,
                phone=conversation.phone,
                role="customer",
                source="customer",
                content=text,
                file_type=file_type,
                provider_message_id=provider_message_id,
                status="received",
                created_at=now,
            )
        )
        if inbound_id is None:
            log.info("Duplicate inbound message dropped", context={"provider_message_id": provider_message_id})
            return DispatchResult(action="duplicate", conversation_id=conversation.id)

        plan = None
        for attempt in range(1, self.max_attempts + 1):
            current = self.conversations.load(conversation.id)
            if current is None:
                raise AutomationError(f"Conversation {conversation.id} not found")

            plan = self._plan(current, text, is_interactive, reply_id, now, log)
            new_state = replace(plan.state, updated_at=now)
            violations = check_invariants(new_state)
            if violations:
                log.error("Conversation state invariant violated", context={"violations": violations})

            if self.conversations.compare_and_swap(current.id, current.version, new_state):
                break
            log.warning("Conversation changed concurrently, recomputing", context={"attempt": attempt})
        else:
            raise ConcurrentUpdateError(conversation.id, self.max_attempts)

        outcome = self._deliver(plan.state, plan.messages, log, now)
        log.info(
            "Inbound message handled",
            context={"action": plan.action, "sent": outcome.sent, "failed": outcome.failed},
        )
        return DispatchResult(action=plan.action, sent=outcome.sent, conversation_id=conversation.id)

    def _plan(
        self,
        current: ConversationState,
        text: str,
        is_interactive: bool,
        reply_id: Optional[str],
        now: datetime,
        log: ConversationLogger,
    ) -> _Plan:
        state = current
        if text.strip() or is_interactive:
            activity = self.messages.activity(current.id)
            try:
                outcome = self.engine.advance(
                    current,
                    text,
                    is_interactive,
                    reply_id=reply_id,
                    first_contact=activity.customer_messages <= 1,
                    now=now,
                )
            except Exception as e:
                log.error(
                    "Chatbot engine failed, aborting session",
                    context={"error": str(e), "chatbot_id": current.chatbot_id, "node_id": current.current_node},
                    exc_info=True,
                )
                outcome = ChatbotOutcome(triggered=False, state=end_session(current))

            if outcome.triggered:
                return _Plan(action="chatbot", state=outcome.state, messages=outcome.messages)
            state = outcome.state

        automation_settings = self.settings_store.get_settings(state.workspace_id)
        reply = self.rules.respond(state.phone, text, state, automation_settings, now=now)
        if reply is not None:
            return _Plan(action="automation", state=state, messages=[reply])
        return _Plan(action="human", state=state)

    def _deliver(
        self,
        state: ConversationState,
        outbound: list[OutboundMessage],
        log: ConversationLogger,
        now: datetime,
    ) -> SendLog:
        result_log = SendLog()
        for message in outbound:
            record_id = self.messages.save(
                MessageRecord(
                    conversation_id=state.id,
                    workspace_id=state.workspace_id,
                    phone=state.phone,
                    role="bot",
                    source=message.source,
                    content=message.text,
                    link=message.link,
                    file_type=message.file_type,
                    node_id=message.node_id,
                    rule_id=message.rule_id,
                    status="pending",
                    created_at=now,
                )
            )
            try:
                result = self.transport.send(state.workspace_id, state.phone, message)
            except Exception as e:
                log.error("Transport raised while sending", context={"error": str(e), "message_id": record_id})
                result = Result.failure(str(e) or e.__class__.__name__, "transport_exception")

            if result.ok:
                self.messages.mark_sent(record_id, result.unwrap_or(None))
                result_log.sent += 1
            else:
                error = result.error or "send failed"
                self.messages.mark_failed(record_id, error)
                result_log.failed += 1
                result_log.errors.append(error)
                log.warning(
                    "Outbound message failed",
                    context={"message_id": record_id, "error": error, "transient": result.transient},
                )
        return result_log
