"""Chat and embedding capability protocols and shared types."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Protocol, runtime_checkable


@dataclass
class Message:
    role: Literal["user", "assistant"]
    content: str


@dataclass
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ChatRequest:
    """A single structured-output request to a chat model."""

    system_prompt: str
    messages: list[Message] = field(default_factory=list)
    max_tokens: int | None = None


@dataclass
class ChatResponse:
    content: str
    usage: Usage | None = None
    model: str | None = None


@runtime_checkable
class ChatProvider(Protocol):
    """Protocol that chat backends must implement."""

    async def chat(self, request: ChatRequest) -> ChatResponse:
        """Run one completion. Errors propagate to the caller."""
        ...


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Protocol that embedding backends must implement."""

    @property
    def dimension(self) -> int: ...

    async def embed(self, text: str) -> list[float]:
        """Return a fixed-dimension vector for ``text``."""
        ...


def clean_json_response(response: str) -> str:
    """Strip a surrounding Markdown code fence from an LLM reply."""
    response = response.strip()
    if response.startswith("```json"):
        response = response[7:]
    elif response.startswith("```"):
        response = response[3:]
    if response.endswith("```"):
        response = response[:-3]
    return response.strip()
