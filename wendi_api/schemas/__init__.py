from wendi_api.schemas.automation import AutomationRule, AutomationSettings, WorkingHours
from wendi_api.schemas.bot_graph import BotGraph, NodeType, parse_bot_graph
from wendi_api.schemas.chatbot import ChatbotDefinition
from wendi_api.schemas.webhook import WhatsAppWebhook, WebhookResponse

__all__ = [
    "AutomationRule",
    "AutomationSettings",
    "WorkingHours",
    "BotGraph",
    "NodeType",
    "parse_bot_graph",
    "ChatbotDefinition",
    "WhatsAppWebhook",
    "WebhookResponse",
]
