from typing import Optional

from wendi_api.config import settings
from wendi_api.logging_config import get_logger
from wendi_api.services.llm import LLMProvider, OpenAIProvider
from wendi_api.services.stores import TextGenerator

logger = get_logger("ai_service")

SYSTEM_PROMPT = (
    "You are a customer support assistant replying on WhatsApp on behalf of a business. "
    "Follow the business instruction below, answer in the customer's language, "
    "and keep the reply short and friendly.\n\nBusiness instruction:\n{instruction}"
)

MAX_CONTEXT_CHARS = 2000

_llm_provider: Optional[OpenAIProvider] = None


def get_llm_provider() -> Optional[OpenAIProvider]:
    """Get or create LLM provider instance. None when no API key is configured."""
    global _llm_provider
    if _llm_provider is None and settings.openai_api_key:
        _llm_provider = OpenAIProvider(api_key=settings.openai_api_key, default_model=settings.openai_model)
    return _llm_provider


class LLMTextGenerator(TextGenerator):
    """Rule-reply generator backed by a chat completion model."""

    def __init__(
        self,
        provider: LLMProvider,
        *,
        temperature: float = 0.4,
        max_tokens: int = 300,
        timeout_seconds: float = 20.0,
    ):
        self.provider = provider
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds

    def generate(self, prompt: str, context: str) -> str:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT.format(instruction=prompt)},
            {"role": "user", "content": (context or "")[:MAX_CONTEXT_CHARS]},
        ]
        response = self.provider.generate(
            messages,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout_seconds=self.timeout_seconds,
        )
        logger.debug("AI reply generated", extra={"context": {"model": response.model, "usage": response.usage}})
        return response.text


def get_text_generator() -> Optional[TextGenerator]:
    provider = get_llm_provider()
    if provider is None:
        return None
    return LLMTextGenerator(provider)
