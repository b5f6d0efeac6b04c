from typing import List, Optional

import httpx

from wendi_api.logging_config import get_logger
from wendi_api.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.openai")


class OpenAIError(Exception):
    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"OpenAI API error: {status_code} - {body[:500]}")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions over httpx."""

    def __init__(self, api_key: str, default_model: str = "gpt-4o-mini", base_url: str = "https://api.openai.com/v1"):
        self.api_key = api_key
        self.default_model = default_model
        self.base_url = f"{base_url.rstrip('/')}/chat/completions"

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        model = model or self.default_model
        timeout = timeout_seconds if timeout_seconds is not None else 30.0

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_completion_tokens": max_tokens,
        }
        logger.debug(f"OpenAI request: model={model}, messages_count={len(messages)}")

        with httpx.Client(timeout=timeout) as client:
            response = client.post(
                self.base_url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=payload,
            )

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.status_code} {response.text[:200]}")
            raise OpenAIError(response.status_code, response.text)

        data = response.json()
        content = ""
        if data.get("choices"):
            message = data["choices"][0].get("message", {})
            content = message.get("content") or ""
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(
            content=content,
            model=data.get("model", model),
            usage=data.get("usage"),
        )
