"""Provider-agnostic LLM types."""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Literal


@dataclass
class Message:
    role: Literal["system", "user", "assistant"]
    content: str


@dataclass
class LLMConfig:
    """Per-call generation options."""
    model: str | None = None
    temperature: float = 0.7
    max_tokens: int | None = None
    json_schema: dict[str, Any] | None = None


@dataclass
class LLMResponse:
    content: str
    structured_data: dict[str, Any] | None = None
    usage: dict[str, int | None] = field(default_factory=dict)
    model: str | None = None
    finish_reason: str | None = None


class LLMProvider(ABC):
    """Text-generation backend.

    ``chat`` must either return text or raise; callers classify the raised
    error (rate limit vs. anything else) from its name, message and status.
    """

    @abstractmethod
    async def chat(self, messages: list[Message], config: LLMConfig) -> LLMResponse:
        ...

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class PromptBuilder:
    """Accumulates system and user prompt sections."""

    def __init__(self) -> None:
        self._system: list[str] = []
        self._user: list[str] = []

    def system(self, text: str) -> "PromptBuilder":
        self._system.append(text.strip())
        return self

    def user(self, text: str) -> "PromptBuilder":
        self._user.append(text.strip())
        return self

    @property
    def system_text(self) -> str:
        return "\n\n".join(self._system)

    @property
    def user_text(self) -> str:
        return "\n\n".join(self._user)

    def build(self) -> list[Message]:
        messages = []
        if self._system:
            messages.append(Message(role="system", content=self.system_text))
        if self._user:
            messages.append(Message(role="user", content=self.user_text))
        return messages
