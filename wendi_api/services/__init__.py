from wendi_api.services.automation_service import AutomationRuleEngine, RuleKind, classify_rule
from wendi_api.services.chatbot_engine import ChatbotEngine, ChatbotOutcome
from wendi_api.services.dispatcher import DispatchResult, Dispatcher
from wendi_api.services.state_machine import (
    ConversationState,
    ConversationStatus,
    InvalidTransitionError,
    can_transition,
    end_session,
    hand_over,
    release,
    start_session,
    transition,
)
