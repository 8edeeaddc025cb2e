"""Branch bookkeeping derived from the node map.

Nothing here holds independent state: every result is recomputed from
``parent_id`` links and node metadata. ``BranchIndex`` only memoizes per
structure version of a ``TreeStore``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from branchchat.tree.paths import children_of, path_to_node, sort_by_created
from branchchat.tree.types import MessageNode, NodeMetadata, Role

if TYPE_CHECKING:
    from branchchat.tree.store import TreeStore

Messages = Mapping[str, MessageNode]


@dataclass(frozen=True, slots=True)
class BranchRef:
    """A branch anchored to a span of its parent's content."""

    node_id: str
    parent_id: str
    branch_id: str | None
    selected_text: str
    selection_start: int | None
    selection_end: int | None
    created_at: datetime

    @property
    def key(self) -> str:
        """Identifier that stays the same across re-renders."""
        return f"{self.parent_id}:{self.branch_id or self.node_id}"


def branch_anchors(messages: Messages, node_id: str) -> list[BranchRef]:
    """Branch-start children of ``node_id`` with a non-empty selection, oldest first.

    If two children share a ``branch_id`` only the earliest is reported.
    """
    refs: list[BranchRef] = []
    seen_branches: set[str] = set()
    for child in sort_by_created(children_of(messages, node_id)):
        anchor = child.metadata.anchor
        if anchor is None or not anchor.selected_text:
            continue
        if child.branch_id:
            if child.branch_id in seen_branches:
                continue
            seen_branches.add(child.branch_id)
        refs.append(
            BranchRef(
                node_id=child.id,
                parent_id=node_id,
                branch_id=child.branch_id,
                selected_text=anchor.selected_text,
                selection_start=anchor.selection_start,
                selection_end=anchor.selection_end,
                created_at=child.created_at,
            )
        )
    return refs


def find_branch_start(
    messages: Messages, branch_id: str | None, parent_id: str | None = None
) -> MessageNode | None:
    """Earliest branch-start node for ``branch_id`` (optionally under ``parent_id``)."""
    if not branch_id:
        return None
    starters = [
        node
        for node in messages.values()
        if node.is_branch_start
        and node.branch_id == branch_id
        and (parent_id is None or node.parent_id == parent_id)
    ]
    if not starters:
        return None
    return sort_by_created(starters)[0]


def _subtree_of(messages: Messages, parent_id: str) -> list[MessageNode]:
    found: list[MessageNode] = []
    stack = [parent_id]
    while stack:
        for child in children_of(messages, stack.pop()):
            found.append(child)
            stack.append(child.id)
    return found


def branch_messages(
    messages: Messages, parent_id: str, branch_id: str | None
) -> list[MessageNode]:
    """Nodes to display while inside a branch, oldest first.

    With a known branch start, this is the starter plus every node tagged with
    the same ``branch_id``. Without one it falls back to tag or parent
    matching, and finally to the whole subtree under ``parent_id``.
    """
    if parent_id not in messages:
        return []

    selected: list[MessageNode] = []
    if branch_id:
        starter = find_branch_start(messages, branch_id, parent_id)
        if starter is not None:
            selected = [
                node
                for node in messages.values()
                if node.id == starter.id or node.branch_id == branch_id
            ]
        else:
            selected = [
                node
                for node in messages.values()
                if node.branch_id == branch_id or node.parent_id == parent_id
            ]
    if not selected:
        selected = _subtree_of(messages, parent_id)
    return sort_by_created(selected)


def build_branch_context(
    messages: Messages,
    branch_id: str,
    new_node: MessageNode,
    context_depth: int = 5,
) -> list[MessageNode]:
    """Model request for a message sent inside a branch.

    Order: system messages, up to ``context_depth`` ancestors ending at the
    message the branch was anchored to, the branch's own messages by time,
    then ``new_node``.
    """
    system_messages = [node for node in messages.values() if node.role is Role.SYSTEM]

    parent_context: list[MessageNode] = []
    starter = find_branch_start(messages, branch_id)
    if starter is not None and starter.parent_id:
        ancestry = path_to_node(messages, starter.parent_id)
        parent_context = ancestry[-context_depth:] if context_depth > 0 else []

    branch_nodes = sort_by_created(
        node
        for node in messages.values()
        if node.branch_id == branch_id and node.id != new_node.id
    )

    ordered: list[MessageNode] = []
    seen: set[str] = set()
    for node in [*system_messages, *parent_context, *branch_nodes, new_node]:
        if node.id not in seen:
            seen.add(node.id)
            ordered.append(node)
    return ordered


def explain_prompt(selected_text: str) -> str:
    """User prompt asking the model to explain only the highlighted text."""
    detail = (
        "For this longer selection, explain its key points and significance."
        if len(selected_text) > 100
        else "Be direct and concise with your explanation."
    )
    return (
        f'Explain ONLY this exact highlighted text: "{selected_text}"\n'
        "Do not ask for clarification. Focus specifically on explaining this exact text, "
        "not any other words that may appear in context.\n"
        f"{detail}"
    )


def build_explain_context(messages: Messages, branch_node: MessageNode) -> list[MessageNode]:
    """Focused request for an auto-explained branch.

    System messages from the branch's path, a synthetic copy of the message
    the selection came from, and a synthetic user prompt about the selection.
    The synthetic nodes are never inserted into the tree.
    """
    path = path_to_node(messages, branch_node.id)
    request = [node for node in path if node.role is Role.SYSTEM]

    parent = messages.get(branch_node.parent_id or "")
    if parent is not None and parent.role is not Role.SYSTEM:
        request.append(
            MessageNode(
                id=f"context-{parent.id}",
                role=parent.role,
                content=parent.content,
                parent_id=None,
                created_at=parent.created_at,
                metadata=NodeMetadata(is_context_message=True),
            )
        )

    request.append(
        MessageNode(
            id=f"explain-{branch_node.id}",
            role=Role.USER,
            content=explain_prompt(branch_node.metadata.selected_text or ""),
            parent_id=None,
            created_at=branch_node.created_at,
            metadata=NodeMetadata(branch_id=branch_node.branch_id, is_context_message=True),
        )
    )
    return request


class BranchIndex:
    """Memoized per-node branch anchors for a TreeStore.

    The cache is dropped whenever the store's structure version changes.
    """

    def __init__(self, store: TreeStore) -> None:
        self._store = store
        self._version = -1
        self._cache: dict[str, list[BranchRef]] = {}

    def anchors_for(self, node_id: str) -> list[BranchRef]:
        if self._version != self._store.structure_version:
            self._cache.clear()
            self._version = self._store.structure_version
        if node_id not in self._cache:
            self._cache[node_id] = branch_anchors(self._store.messages, node_id)
        return list(self._cache[node_id])

    def is_branch_point(self, node_id: str) -> bool:
        """True if the node has children worth annotating as branch anchors."""
        return self._store.has_children(node_id) and bool(self.anchors_for(node_id))

    def find_branch_start(
        self, branch_id: str | None, parent_id: str | None = None
    ) -> MessageNode | None:
        return find_branch_start(self._store.messages, branch_id, parent_id)
