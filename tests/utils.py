"""Shared test utilities for BranchChat tests."""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import AsyncIterator, Iterable
from datetime import datetime, timedelta
from typing import Any
from unittest.mock import Mock

from branchchat.core.llm.provider import CompletionResult, Message, StreamChunk
from branchchat.tree.store import TreeStore
from branchchat.tree.types import Role

START_TIME = datetime(2025, 1, 1, 12, 0, 0)


class TickingClock:
    """datetime clock that advances one second per call."""

    def __init__(self, start: datetime = START_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> datetime:
        current = self.now
        self.now += self.step
        return current


class ManualClock:
    """Monotonic-style float clock advanced by hand."""

    def __init__(self, start: float = 100.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds


def sequential_ids(prefix: str = "id") -> Any:
    """id factory yielding id1, id2, ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}{next(counter)}"


def create_store() -> TreeStore:
    """TreeStore with deterministic ids and strictly increasing timestamps."""
    return TreeStore(id_factory=sequential_ids("n"), clock=TickingClock())


def build_linear_store(*turns: tuple[str, str]) -> TreeStore:
    """Store initialized with an empty system root followed by ``turns``.

    Args:
        turns: (role, content) pairs appended in order

    Returns:
        The store, with the last turn active
    """
    store = create_store()
    store.initialize()
    for role, content in turns:
        store.add_message(Role(role), content)
    return store


async def async_iter(items: Iterable[Any]) -> AsyncIterator[Any]:
    for item in items:
        await asyncio.sleep(0)
        yield item


async def failing_stream(chunks: Iterable[StreamChunk], error: Exception) -> AsyncIterator[StreamChunk]:
    """Yield ``chunks`` then raise ``error``."""
    for chunk in chunks:
        await asyncio.sleep(0)
        yield chunk
    raise error


class ScriptedProvider:
    """LLMProvider double that replays scripted chunk lists.

    Each call to ``stream`` consumes the next script. A script is either a
    list of StreamChunk/str items or an Exception to raise mid-stream.
    """

    def __init__(self, *scripts: Any, model: str = "test-model") -> None:
        self._scripts = list(scripts)
        self._model = model
        self.requests: list[list[Message]] = []
        self.gate: asyncio.Event | None = None

    @property
    def model(self) -> str:
        return self._model

    def add_script(self, script: Any) -> None:
        self._scripts.append(script)

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        chunks = [chunk async for chunk in self.stream(messages, max_tokens=max_tokens)]
        return CompletionResult(content="".join(c.text for c in chunks), finish_reason="stop")

    async def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        self.requests.append(list(messages))
        script = self._scripts.pop(0) if self._scripts else ["ok"]
        if isinstance(script, Exception):
            raise script
        for item in script:
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(0)
            if isinstance(item, Exception):
                raise item
            yield item if isinstance(item, StreamChunk) else StreamChunk(text=item)
        yield StreamChunk(is_final=True, finish_reason="stop")


def create_mock_llm_response(content: str = "Test response") -> Any:
    """Create a mock LiteLLM completion response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message = Mock()
    response.choices[0].message.content = content
    response.choices[0].finish_reason = "stop"

    response.usage = Mock()
    response.usage.prompt_tokens = 10
    response.usage.completion_tokens = 20
    response.usage.total_tokens = 30

    return response


def create_mock_llm_stream_chunk(
    text: str | None = "chunk",
    is_final: bool = False,
    reasoning: str | None = None,
) -> Any:
    """Create a mock streaming chunk from LiteLLM.

    Args:
        text: ``delta.content``
        is_final: Whether this chunk carries a finish reason
        reasoning: ``delta.reasoning_content`` (reasoning models only)
    """
    chunk = Mock()
    chunk.choices = [Mock()]
    chunk.choices[0].delta = Mock()
    chunk.choices[0].delta.content = text
    chunk.choices[0].delta.reasoning_content = reasoning
    chunk.choices[0].finish_reason = "stop" if is_final else None

    return chunk
