from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from boundary_engine.domain.errors import DomainError
from boundary_engine.domain.types import Result


@dataclass(frozen=True)
class ChatMessage:
    role: str  # "system" | "user" | "assistant"
    content: str


@dataclass(frozen=True)
class LLMResponse:
    text: str
    finish_reason: str = "stop"
    usage_tokens: int | None = None


@runtime_checkable
class LLMPort(Protocol):
    """Chat/completion provider used by the assessment stages.

    Adapters never raise for provider trouble; they return a failed Result
    carrying one of the ProviderError subclasses.
    """

    async def chat(
        self,
        messages: Sequence[ChatMessage],
        temperature: float = 0.0,
        max_tokens: int = 256,
    ) -> Result[LLMResponse, DomainError]: ...
