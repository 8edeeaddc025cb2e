"""Path and ancestry resolution over a flat node map.

All functions are pure: they read a ``messages`` mapping (node id to
``MessageNode``) and never mutate it. Structure is derived from
``parent_id`` links only.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from branchchat.tree.types import MessageNode

Messages = Mapping[str, "MessageNode"]


def path_to_node(messages: Messages, target_id: str | None) -> list[MessageNode]:
    """Return the nodes from the root down to ``target_id``.

    Returns an empty list if ``target_id`` is None or not in ``messages``.
    """
    if not target_id or target_id not in messages:
        return []

    path: list[MessageNode] = []
    seen: set[str] = set()
    current_id: str | None = target_id
    while current_id and current_id in messages and current_id not in seen:
        seen.add(current_id)
        node = messages[current_id]
        path.append(node)
        current_id = node.parent_id

    path.reverse()
    return path


def children_of(messages: Messages, parent_id: str | None) -> list[MessageNode]:
    """Return the direct children of ``parent_id`` in map order (unsorted)."""
    if not parent_id:
        return []
    return [node for node in messages.values() if node.parent_id == parent_id]


def sort_by_created(nodes: Iterable[MessageNode]) -> list[MessageNode]:
    """Sort oldest first. The sort is stable, so map order breaks timestamp ties."""
    return sorted(nodes, key=lambda node: node.created_at)


def _walk_main_line(messages: Messages, root_id: str | None, *, latest: bool) -> list[MessageNode]:
    if not root_id or root_id not in messages:
        return []

    path = [messages[root_id]]
    seen = {root_id}
    while True:
        candidates = sort_by_created(
            child
            for child in children_of(messages, path[-1].id)
            if not child.is_branch_start and child.id not in seen
        )
        if not candidates:
            return path
        chosen = candidates[-1] if latest else candidates[0]
        seen.add(chosen.id)
        path.append(chosen)


def main_thread_path(messages: Messages, root_id: str | None) -> list[MessageNode]:
    """Canonical branch-free view: follow the earliest non-branch child at each step."""
    return _walk_main_line(messages, root_id, latest=False)


def latest_message_id(messages: Messages, root_id: str | None) -> str | None:
    """Follow the newest non-branch child at each step and return the last id."""
    path = _walk_main_line(messages, root_id, latest=True)
    return path[-1].id if path else None


def descendants_for_pruning(messages: Messages, node_id: str) -> list[str]:
    """Collect descendants of ``node_id`` that depend on its content.

    Branch-start children of ``node_id`` and everything under them are left
    alone. Deeper branches lose the message they were anchored to, so they
    are collected with their subtrees and no node is left without a parent.
    """
    collected: list[str] = []
    stack = [node_id]
    visited = {node_id}
    while stack:
        current = stack.pop()
        for child in children_of(messages, current):
            if child.id in visited:
                continue
            if child.is_branch_start and current == node_id:
                continue
            visited.add(child.id)
            collected.append(child.id)
            stack.append(child.id)
    return collected


def depth_of(messages: Messages, node_id: str) -> int:
    """Number of edges between the root and ``node_id`` (-1 if unknown)."""
    return len(path_to_node(messages, node_id)) - 1


def tree_problems(messages: Messages, root_id: str | None) -> list[str]:
    """Describe every violation of the single-root, acyclic tree invariant."""
    problems: list[str] = []
    if not root_id or root_id not in messages:
        return [f"Root message {root_id!r} is missing"]
    if messages[root_id].parent_id is not None:
        problems.append(f"Root message {root_id} has a parent")

    for node_id, node in messages.items():
        if node.id != node_id:
            problems.append(f"Message keyed {node_id} has id {node.id}")
        if node.parent_id is None:
            if node_id != root_id:
                problems.append(f"Message {node_id} is a second root")
        elif node.parent_id not in messages:
            problems.append(f"Message {node_id} references missing parent {node.parent_id}")

    for node_id in messages:
        seen: set[str] = set()
        current: str | None = node_id
        while current is not None and current in messages:
            if current in seen:
                problems.append(f"Cycle detected through message {node_id}")
                break
            seen.add(current)
            current = messages[current].parent_id
    return problems
