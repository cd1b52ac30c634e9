"""Anthropic API chat backend for summarization and fact extraction."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from memoire.llm.base import ChatRequest, ChatResponse, Usage

logger = logging.getLogger(__name__)


@dataclass
class AnthropicChat:
    """Direct Anthropic API via the `anthropic` SDK. Pure conversation, no tools."""

    model: str = "claude-sonnet-4-5-20250929"
    max_tokens: int = 1024
    timeout: int = 120

    def __post_init__(self) -> None:
        try:
            import anthropic

            self._client = anthropic.Anthropic(timeout=self.timeout)
        except ImportError:
            raise ImportError("anthropic package required. Install with: pip install memoire")

    @property
    def name(self) -> str:
        return "anthropic_api"

    async def chat(self, request: ChatRequest) -> ChatResponse:
        kwargs: dict = {
            "model": self.model,
            "max_tokens": request.max_tokens or self.max_tokens,
            "messages": [{"role": m.role, "content": m.content} for m in request.messages],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        try:
            response = await asyncio.to_thread(self._client.messages.create, **kwargs)
        except Exception as e:
            logger.error("Anthropic API error: %s", e)
            raise

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        usage = None
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
        return ChatResponse(content=text, usage=usage, model=response.model)
