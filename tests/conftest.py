"""Shared fakes: scripted chat model, bag-of-words embedder, settable clock."""

from __future__ import annotations

import json
import re
import zlib
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from memoire.llm.base import ChatRequest, ChatResponse, Usage
from memoire.memory.daily_notes import DailyConversationTurn
from memoire.memory.storage import MemoryStorage

START = datetime(2026, 3, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeChat:
    """Replies from a script; an Exception in the script is raised instead."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[ChatRequest] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def chat(self, request: ChatRequest) -> ChatResponse:
        self.requests.append(request)
        reply = self.responses.pop(0) if self.responses else "{}"
        if isinstance(reply, Exception):
            raise reply
        if not isinstance(reply, str):
            reply = json.dumps(reply)
        return ChatResponse(content=reply, usage=Usage(10, 10), model="fake")


class FakeEmbedder:
    """Deterministic bag-of-words vectors: shared words ⇒ high cosine."""

    def __init__(self, dimension: int = 64) -> None:
        self._dimension = dimension
        self.inputs: list[str] = []
        self.fail = False

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        self.inputs.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        vec = [0.0] * self._dimension
        for word in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(word.encode()) % self._dimension] += 1.0
        return vec


def make_turn(
    chat_id: str = "c1",
    sender_id: str = "u1",
    sender_name: str = "Alice",
    user_message: str = "hello there",
    assistant_response: str = "hi Alice",
    timestamp: datetime = START,
    is_group: bool = False,
    chat_name: str | None = None,
) -> DailyConversationTurn:
    return DailyConversationTurn(
        timestamp=timestamp,
        chat_id=chat_id,
        chat_name=chat_name or sender_name,
        sender_id=sender_id,
        sender_name=sender_name,
        user_message=user_message,
        assistant_response=assistant_response,
        is_group=is_group,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage(tmp_path: Path) -> MemoryStorage:
    return MemoryStorage(tmp_path / "memory")


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()
