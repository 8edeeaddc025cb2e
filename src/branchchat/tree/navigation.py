"""Nested branch navigation for a viewing session.

The stack is session state only. It is never persisted and can be rebuilt
from the active path with ``BranchNavigationStack.rebuild``.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from branchchat.logging import get_logger
from branchchat.tree.branches import find_branch_start
from branchchat.tree.paths import main_thread_path, path_to_node

if TYPE_CHECKING:
    from branchchat.tree.store import AddMessageResult, TreeStore
    from branchchat.tree.types import MessageNode

log = get_logger("navigation")

LABEL_LIMIT = 60


def truncate_label(text: str | None, limit: int = LABEL_LIMIT) -> str | None:
    """Shorten breadcrumb text to ``limit`` characters, ending in '...'."""
    if text is None or len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


@dataclass(frozen=True, slots=True)
class BranchFrame:
    """One level of branch entry."""

    parent_id: str
    branch_id: str | None
    source_text: str | None


class BranchNavigationStack:
    """LIFO of entered branches; empty means the main thread is shown."""

    def __init__(self, frames: list[BranchFrame] | None = None) -> None:
        self._frames: list[BranchFrame] = list(frames or [])

    @property
    def frames(self) -> tuple[BranchFrame, ...]:
        return tuple(self._frames)

    @property
    def current(self) -> BranchFrame | None:
        return self._frames[-1] if self._frames else None

    @property
    def depth(self) -> int:
        return len(self._frames)

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[BranchFrame]:
        return iter(self._frames)

    def push(self, frame: BranchFrame) -> None:
        self._frames.append(frame)

    def enter(self, result: AddMessageResult, source_text: str) -> BranchFrame | None:
        """Push a frame for a freshly created branch node."""
        node = result.new_node
        if not node.parent_id:
            return None
        frame = BranchFrame(
            parent_id=node.parent_id,
            branch_id=node.branch_id,
            source_text=truncate_label(source_text),
        )
        self.push(frame)
        return frame

    def pop(self, store: TreeStore) -> str | None:
        """Leave the current branch and activate the message it was anchored to."""
        if not self._frames:
            return None
        frame = self._frames.pop()
        store.select_branch(frame.parent_id)
        return frame.parent_id

    def clear(self) -> None:
        self._frames.clear()

    def navigate_to(self, depth: int, store: TreeStore) -> str | None:
        """Truncate the stack to ``depth`` frames and re-resolve the active node.

        Depth 0 returns to the main thread and activates its last message.
        Otherwise the frame's branch-start node is activated, falling back to
        the frame's parent if the branch start no longer exists.
        """
        if depth < 0 or depth > len(self._frames):
            log.warning("Cannot navigate to depth %d (stack depth %d)", depth, len(self._frames))
            return None

        del self._frames[depth:]
        if depth == 0:
            conversation = store.conversation
            if conversation is None:
                return None
            main = main_thread_path(conversation.messages, conversation.root_message_id)
            target = main[-1].id if main else conversation.root_message_id
        else:
            frame = self._frames[-1]
            starter = find_branch_start(store.messages, frame.branch_id, frame.parent_id)
            target = starter.id if starter is not None else frame.parent_id

        store.select_branch(target)
        return target

    def labels(self) -> list[str]:
        """Breadcrumb labels, starting with the main thread."""
        return ["Main"] + [
            frame.source_text or f"Branch {index + 1}" for index, frame in enumerate(self._frames)
        ]

    @classmethod
    def rebuild(
        cls, messages: Mapping[str, MessageNode], active_id: str | None
    ) -> BranchNavigationStack:
        """Reconstruct frames from the branch starts on the path to ``active_id``."""
        frames = [
            BranchFrame(
                parent_id=node.parent_id,
                branch_id=node.branch_id,
                source_text=truncate_label(node.metadata.selected_text),
            )
            for node in path_to_node(messages, active_id)
            if node.is_branch_start and node.parent_id
        ]
        return cls(frames)
