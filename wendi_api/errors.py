"""Domain exceptions for the conversation automation core."""


class AutomationError(Exception):
    """Base class for errors raised by the automation core."""


class GraphValidationError(AutomationError):
    """A chatbot graph failed structural validation (dangling reference, missing start node)."""


class ChatbotEngineError(AutomationError):
    """The chatbot engine could not complete a step; the session must be aborted."""

    def __init__(self, message: str, *, chatbot_id: int | None = None, node_id: str | None = None):
        self.chatbot_id = chatbot_id
        self.node_id = node_id
        super().__init__(message)


class StepLimitExceededError(ChatbotEngineError):
    def __init__(self, limit: int, *, chatbot_id: int | None = None, node_id: str | None = None):
        self.limit = limit
        super().__init__(
            f"Auto-advance exceeded {limit} steps (cyclic graph?)",
            chatbot_id=chatbot_id,
            node_id=node_id,
        )


class ConcurrentUpdateError(AutomationError):
    """Compare-and-swap kept failing for a conversation after all retries."""

    def __init__(self, conversation_id: int, attempts: int):
        self.conversation_id = conversation_id
        self.attempts = attempts
        super().__init__(f"Conversation {conversation_id} changed concurrently {attempts} times, giving up")
