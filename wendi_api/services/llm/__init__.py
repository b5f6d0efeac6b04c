from wendi_api.services.llm.base import LLMProvider, LLMResponse
from wendi_api.services.llm.openai_provider import OpenAIError, OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIError", "OpenAIProvider"]
