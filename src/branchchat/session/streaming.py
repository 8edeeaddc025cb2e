"""Applies one streamed model response to the conversation tree.

The coordinator turns transport events into TreeStore mutations:

- the first visible chunk creates the assistant node under the target parent
- later chunks append to that node
- thinking chunks accumulate locally and are written in full whenever the
  node exists, so thinking that arrives before the first visible chunk is
  not lost
- a failed stream keeps whatever partial content was received
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from branchchat.core.llm.errors import LLMError, classify_error
from branchchat.logging import get_logger
from branchchat.tree.types import NodeMetadata, Role

if TYPE_CHECKING:
    from branchchat.core.llm.provider import StreamChunk
    from branchchat.tree.store import TreeStore
    from branchchat.tree.types import MessageNode

log = get_logger("streaming")


@dataclass(slots=True)
class StreamOutcome:
    """What one streaming session produced.

    Attributes:
        node_id: The assistant node created for the response (None if no
            chunk ever arrived)
        content: Visible text received
        thinking_seconds: Seconds from the first thinking chunk to the end,
            rounded; None if no thinking arrived
        error: The failure, if the stream did not complete
    """

    node_id: str | None
    content: str
    thinking_seconds: int | None = None
    error: LLMError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class StreamingCoordinator:
    """Drives one in-flight response at a time against a TreeStore.

    Usage:
        coordinator = StreamingCoordinator(store, reasoning=is_reasoning_model(model))
        coordinator.start(user_node.id, path)
        outcome = await coordinator.consume(provider.stream(to_messages(path)))
    """

    def __init__(
        self,
        store: TreeStore,
        *,
        reasoning: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._reasoning = reasoning
        self._clock = clock

        self._active = False
        self._parent_id: str | None = None
        self._path: list[MessageNode] = []
        self._metadata = NodeMetadata()
        self._node_id: str | None = None
        self._content = ""
        self._thinking = ""
        self._thinking_started: float | None = None

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def node_id(self) -> str | None:
        return self._node_id

    @property
    def parent_id(self) -> str | None:
        return self._parent_id

    @property
    def path(self) -> list[MessageNode]:
        """The message path the response is generated from."""
        return list(self._path)

    @property
    def thinking(self) -> str:
        return self._thinking

    def start(
        self,
        parent_id: str,
        path: list[MessageNode],
        metadata: NodeMetadata | None = None,
    ) -> None:
        """Reset local state for a new response under ``parent_id``.

        Only the ``branch_id`` of ``metadata`` is carried to the response node.
        """
        if self._active:
            log.warning("Restarting coordinator while a stream to %s is in flight", self._parent_id)
        self._active = True
        self._parent_id = parent_id
        self._path = list(path)
        self._metadata = metadata.for_response() if metadata else NodeMetadata()
        self._node_id = None
        self._content = ""
        self._thinking = ""
        self._thinking_started = None

    def on_chunk(self, text: str) -> None:
        """Handle a visible content chunk."""
        if not self._active or not text:
            return

        self._content += text
        if self._node_id is not None:
            self._store.update_message_content(self._node_id, text)
            return

        result = self._store.add_message(
            Role.ASSISTANT,
            text,
            metadata=NodeMetadata(branch_id=self._metadata.branch_id),
            parent_id=self._parent_id,
        )
        if result is None:
            log.warning("Could not create response node under %s", self._parent_id)
            return
        self._node_id = result.new_node.id
        self._flush_thinking()

    def on_thinking_chunk(self, text: str) -> None:
        """Handle a reasoning-trace chunk (ignored for non-reasoning models)."""
        if not self._active or not self._reasoning or not text:
            return
        if self._thinking_started is None:
            self._thinking_started = self._clock()
        self._thinking += text
        self._flush_thinking()

    def on_complete(self) -> StreamOutcome:
        """Finish the session successfully."""
        if self._thinking and self._node_id is None and self._active:
            # Thinking-only response: create the node so the trace is kept
            result = self._store.add_message(
                Role.ASSISTANT,
                "",
                metadata=NodeMetadata(branch_id=self._metadata.branch_id),
                thinking_content=self._thinking,
                parent_id=self._parent_id,
            )
            if result is not None:
                self._node_id = result.new_node.id
        self._flush_thinking()
        return self._finish(None)

    def on_error(self, error: LLMError | BaseException) -> StreamOutcome:
        """Finish the session with a failure. Partial content stays in the tree."""
        if not isinstance(error, LLMError):
            error = classify_error(error)
        self._flush_thinking()
        log.warning("Stream under %s failed (%s): %s", self._parent_id, error.type.value, error)
        return self._finish(error)

    async def consume(self, stream: AsyncIterator[StreamChunk]) -> StreamOutcome:
        """Feed a transport stream through the callbacks.

        Exceptions raised by the stream become ``StreamOutcome.error``.
        Cancellation stops processing, keeps the partial node and propagates.
        """
        try:
            async for chunk in stream:
                if chunk.thinking:
                    self.on_thinking_chunk(chunk.thinking)
                if chunk.text:
                    self.on_chunk(chunk.text)
        except asyncio.CancelledError:
            self._flush_thinking()
            self._finish(None)
            raise
        except Exception as e:
            return self.on_error(e)
        return self.on_complete()

    def _flush_thinking(self) -> None:
        if self._node_id is not None and self._thinking:
            self._store.update_message_thinking_content(self._node_id, self._thinking)

    def _finish(self, error: LLMError | None) -> StreamOutcome:
        thinking_seconds = None
        if self._thinking_started is not None:
            thinking_seconds = round(self._clock() - self._thinking_started)
        outcome = StreamOutcome(
            node_id=self._node_id,
            content=self._content,
            thinking_seconds=thinking_seconds,
            error=error,
        )
        self._active = False
        return outcome
