from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None

    @property
    def text(self) -> str:
        return (self.content or "").strip()


class LLMProvider(ABC):
    """Chat completion backend used to phrase AI automation replies."""

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
        timeout_seconds: Optional[float] = None,
    ) -> LLMResponse:
        """Complete a chat given ``[{"role": ..., "content": ...}]`` messages."""
