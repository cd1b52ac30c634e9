"""OpenAI embeddings backend for semantic memory."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class OpenAIEmbedder:
    """Embeddings via the `openai` SDK."""

    model: str = "text-embedding-3-small"
    dimension: int = 1536
    timeout: int = 60

    def __post_init__(self) -> None:
        try:
            import openai

            self._client = openai.OpenAI(timeout=self.timeout)
        except ImportError:
            raise ImportError("openai package required. Install with: pip install memoire")

    async def embed(self, text: str) -> list[float]:
        try:
            response = await asyncio.to_thread(
                self._client.embeddings.create,
                model=self.model,
                input=text,
                encoding_format="float",
            )
        except Exception as e:
            logger.error("OpenAI embedding error (%d chars): %s", len(text), e)
            raise
        return list(response.data[0].embedding)
