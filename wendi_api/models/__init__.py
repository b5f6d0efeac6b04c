from wendi_api.models.automation_settings import AutomationSettings
from wendi_api.models.chatbot import Chatbot
from wendi_api.models.conversation import Conversation
from wendi_api.models.message import Message
from wendi_api.models.workspace import Workspace

__all__ = [
    "Workspace",
    "Chatbot",
    "Conversation",
    "Message",
    "AutomationSettings",
]
