"""Resumable chatbot flow runner.

A session is a (chatbot, current node) pair stored on the conversation. Each
inbound message either starts a session, answers the node the session is
waiting on, or leaves the conversation alone. Entering nodes is a bounded
loop: plain nodes are emitted and followed, a waiting node pauses the session,
CHAT_WITH_AGENT hands the conversation to a human.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from wendi_api.config import settings
from wendi_api.errors import ChatbotEngineError, StepLimitExceededError
from wendi_api.logging_config import ConversationLogger, get_logger
from wendi_api.schemas.bot_graph import NodeType
from wendi_api.schemas.chatbot import ChatbotDefinition
from wendi_api.services.state_machine import (
    ConversationState,
    ConversationStatus,
    end_session,
    hand_over,
    move_to,
    start_session,
)
from wendi_api.services.stores import BotDefinitionStore, OutboundMessage

logger = get_logger("chatbot_engine")


@dataclass
class ChatbotOutcome:
    triggered: bool
    state: ConversationState
    messages: list[OutboundMessage] = field(default_factory=list)


def _ensure_timezone(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class ChatbotEngine:
    def __init__(
        self,
        bots: BotDefinitionStore,
        *,
        step_limit: Optional[int] = None,
        timeout_minutes: Optional[int] = None,
        invalid_option_message: Optional[str] = None,
    ):
        self.bots = bots
        self.step_limit = step_limit if step_limit is not None else settings.chatbot_step_limit
        self.timeout_minutes = timeout_minutes if timeout_minutes is not None else settings.chatbot_timeout_minutes
        self.invalid_option_message = invalid_option_message or settings.invalid_option_message

    def advance(
        self,
        conversation: ConversationState,
        text: str,
        is_interactive: bool = False,
        *,
        reply_id: Optional[str] = None,
        first_contact: bool = False,
        now: Optional[datetime] = None,
    ) -> ChatbotOutcome:
        """Run one logical step of the chatbot for an inbound message.

        Raises ChatbotEngineError (or StepLimitExceededError) when the graph
        cannot be walked; the caller aborts the session.
        """
        now = now or datetime.now(timezone.utc)
        text = text or ""
        log = ConversationLogger(logger, {"conversation_id": conversation.id, "workspace_id": conversation.workspace_id})

        chatbot = self._match_trigger(conversation.workspace_id, text)
        if chatbot is not None:
            log.info("Chatbot trigger matched", context={"chatbot_id": chatbot.id, "trigger": chatbot.trigger})
            return self._start(chatbot, conversation, now)

        if not conversation.in_session:
            chatbot = self._default_chatbot(conversation, first_contact)
            if chatbot is None:
                return ChatbotOutcome(triggered=False, state=conversation)
            log.info("Default chatbot engaged", context={"chatbot_id": chatbot.id})
            return self._start(chatbot, conversation, now)

        if self._expired(conversation, now) and not is_interactive:
            log.info("Chatbot session timed out", context={"node_id": conversation.current_node})
            return ChatbotOutcome(triggered=False, state=end_session(conversation))

        chatbot = self.bots.get_chatbot_by_id(conversation.chatbot_id)
        node = chatbot.graph.get(conversation.current_node) if chatbot else None
        if node is None:
            log.warning(
                "Chatbot session points at a missing chatbot or node, aborting",
                context={"chatbot_id": conversation.chatbot_id, "node_id": conversation.current_node},
            )
            return ChatbotOutcome(triggered=False, state=end_session(conversation))

        children = node.options()
        if children:
            choice = self._select_option(children, text, is_interactive, reply_id)
            if choice is None:
                log.info("Invalid option", context={"node_id": node.node_id, "text": text[:100]})
                reprompt = OutboundMessage(text=self.invalid_option_message, node_id=node.node_id)
                return ChatbotOutcome(triggered=True, state=conversation, messages=[reprompt])

            messages = []
            if choice.text():
                messages.append(OutboundMessage(text=choice.text(), node_id=choice.node_id))
            if choice.successor() is None:
                return ChatbotOutcome(triggered=True, state=end_session(conversation), messages=messages)
            return self._enter(chatbot, conversation, choice.successor(), messages, now)

        if node.successor() is not None:
            return self._enter(chatbot, conversation, node.successor(), [], now)

        log.info("Chatbot flow finished", context={"node_id": node.node_id})
        return ChatbotOutcome(triggered=False, state=end_session(conversation))

    def _match_trigger(self, workspace_id: int, text: str) -> Optional[ChatbotDefinition]:
        candidate = text.strip()
        if not candidate:
            return None
        for chatbot in self.bots.get_published_chatbots(workspace_id):
            if chatbot.trigger and chatbot.trigger == candidate:
                return chatbot
        return None

    def _default_chatbot(self, conversation: ConversationState, first_contact: bool) -> Optional[ChatbotDefinition]:
        if conversation.assigned:
            return None
        if not first_contact and conversation.status != ConversationStatus.CLOSED:
            return None
        for chatbot in self.bots.get_published_chatbots(conversation.workspace_id):
            if chatbot.default:
                return chatbot
        return None

    def _expired(self, conversation: ConversationState, now: datetime) -> bool:
        if conversation.chatbot_timeout is None:
            return False
        return _ensure_timezone(conversation.chatbot_timeout) <= now

    @staticmethod
    def _select_option(children, text: str, is_interactive: bool, reply_id: Optional[str]):
        answer = text.strip()
        if is_interactive:
            if reply_id:
                for child in children:
                    if child.node_id == reply_id:
                        return child
            for child in children:
                if child.text() == answer:
                    return child

        try:
            index = int(answer)
        except ValueError:
            return None
        if 1 <= index <= len(children):
            return children[index - 1]
        return None

    def _start(self, chatbot: ChatbotDefinition, conversation: ConversationState, now: datetime) -> ChatbotOutcome:
        start_id = chatbot.graph.start_node_id
        state = start_session(conversation, chatbot.id, start_id)
        return self._enter(chatbot, state, start_id, [], now)

    def _enter(
        self,
        chatbot: ChatbotDefinition,
        state: ConversationState,
        node_id: str,
        messages: list[OutboundMessage],
        now: datetime,
    ) -> ChatbotOutcome:
        steps = 0
        current_id: Optional[str] = node_id

        while current_id is not None:
            steps += 1
            if steps > self.step_limit:
                raise StepLimitExceededError(self.step_limit, chatbot_id=chatbot.id, node_id=current_id)

            node = chatbot.graph.get(current_id)
            if node is None:
                raise ChatbotEngineError(
                    f"Node '{current_id}' not found in chatbot {chatbot.id}",
                    chatbot_id=chatbot.id,
                    node_id=current_id,
                )

            if node.type == NodeType.CHAT_WITH_AGENT:
                if node.text():
                    messages.append(self._render(node))
                return ChatbotOutcome(triggered=True, state=hand_over(state), messages=messages)

            if node.text() or node.media_link():
                messages.append(self._render(node))

            if node.awaits_reply():
                timeout = now + timedelta(minutes=self.timeout_minutes)
                return ChatbotOutcome(triggered=True, state=move_to(state, node.node_id, timeout), messages=messages)

            current_id = node.successor()

        return ChatbotOutcome(triggered=True, state=end_session(state), messages=messages)

    @staticmethod
    def _render(node) -> OutboundMessage:
        link = node.media_link()
        return OutboundMessage(
            text=node.text(),
            link=link,
            file_type=getattr(node, "file_type", "none") if link else "none",
            options=tuple(child.text() for child in node.options()),
            option_ids=tuple(child.node_id for child in node.options()),
            interactive=node.type == NodeType.BUTTON_MESSAGE,
            node_id=node.node_id,
        )
