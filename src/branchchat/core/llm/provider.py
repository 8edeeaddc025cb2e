"""LLM provider protocol and base types."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from branchchat.tree.types import ImageAttachment, Role

if TYPE_CHECKING:
    from branchchat.tree.types import MessageNode


@dataclass(frozen=True, slots=True)
class Message:
    """A message in an LLM request.

    Attributes:
        role: The role (system, user, assistant)
        content: The message content
        images: Media attached to the message
    """

    role: Role
    content: str
    images: tuple[ImageAttachment, ...] = ()


@dataclass(slots=True)
class StreamChunk:
    """A chunk from a streaming LLM response.

    ``text`` is visible answer content; ``thinking`` is reasoning trace text.
    Either may be empty.
    """

    text: str = ""
    thinking: str = ""
    is_final: bool = False
    finish_reason: str | None = None


@dataclass(slots=True)
class CompletionResult:
    """Result from a non-streaming completion."""

    content: str
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)


def to_messages(nodes: Iterable[MessageNode]) -> list[Message]:
    """Convert a node path into request messages."""
    return [
        Message(role=node.role, content=node.content, images=tuple(node.metadata.images))
        for node in nodes
    ]


@runtime_checkable
class LLMProvider(Protocol):
    """Protocol for LLM providers.

    Implementations should support both streaming and non-streaming completions.
    """

    @property
    def model(self) -> str:
        """The model identifier being used."""
        ...

    async def complete(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> CompletionResult:
        """Generate a completion (non-streaming)."""
        ...

    def stream(
        self,
        messages: list[Message],
        *,
        max_tokens: int = 2048,
        stop: list[str] | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Generate a streaming completion.

        Yields:
            StreamChunk objects as they arrive
        """
        ...
