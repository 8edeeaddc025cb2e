"""Tests for path and ancestry resolution over the node map."""

from __future__ import annotations

from datetime import timedelta

from branchchat.tree.paths import (
    children_of,
    depth_of,
    descendants_for_pruning,
    latest_message_id,
    main_thread_path,
    path_to_node,
    sort_by_created,
    tree_problems,
)
from branchchat.tree.types import BranchAnchor, MessageNode, NodeMetadata, Role
from tests.utils import START_TIME


def make_node(
    node_id: str,
    parent_id: str | None,
    minute: int,
    role: Role = Role.USER,
    branch_text: str | None = None,
) -> MessageNode:
    metadata = NodeMetadata()
    if branch_text is not None:
        metadata = NodeMetadata(branch_id=f"branch-{node_id}", anchor=BranchAnchor(branch_text))
    return MessageNode(
        id=node_id,
        role=role,
        content=node_id,
        parent_id=parent_id,
        created_at=START_TIME + timedelta(minutes=minute),
        metadata=metadata,
    )


def make_map(*nodes: MessageNode) -> dict[str, MessageNode]:
    return {node.id: node for node in nodes}


def sample_tree() -> dict[str, MessageNode]:
    """root -> u1 -> a1 -> u2, plus a branch b1 under u1 and a later reply a1b."""
    return make_map(
        make_node("root", None, 0, Role.SYSTEM),
        make_node("u1", "root", 1),
        make_node("a1", "u1", 2, Role.ASSISTANT),
        make_node("b1", "u1", 3, Role.ASSISTANT, branch_text="Hi"),
        make_node("u2", "a1", 4),
        make_node("a1b", "u1", 5, Role.ASSISTANT),
    )


class TestPathToNode:
    """Root-to-node path resolution."""

    def test_path_starts_at_root_and_ends_at_target(self) -> None:
        messages = sample_tree()
        path = path_to_node(messages, "u2")
        assert [n.id for n in path] == ["root", "u1", "a1", "u2"]

    def test_length_is_depth_plus_one(self) -> None:
        messages = sample_tree()
        for node_id in messages:
            assert len(path_to_node(messages, node_id)) == depth_of(messages, node_id) + 1

    def test_root_path(self) -> None:
        messages = sample_tree()
        assert [n.id for n in path_to_node(messages, "root")] == ["root"]

    def test_none_or_unknown_target(self) -> None:
        messages = sample_tree()
        assert path_to_node(messages, None) == []
        assert path_to_node(messages, "missing") == []

    def test_cycle_does_not_loop_forever(self) -> None:
        messages = make_map(make_node("a", "b", 0), make_node("b", "a", 1))
        path = path_to_node(messages, "a")
        assert len(path) == 2

    def test_depth_of_unknown_is_minus_one(self) -> None:
        assert depth_of(sample_tree(), "missing") == -1


class TestChildren:
    """Child lookup and ordering."""

    def test_children_of(self) -> None:
        messages = sample_tree()
        ids = {n.id for n in children_of(messages, "u1")}
        assert ids == {"a1", "b1", "a1b"}

    def test_children_of_leaf_and_none(self) -> None:
        messages = sample_tree()
        assert children_of(messages, "u2") == []
        assert children_of(messages, None) == []

    def test_sort_by_created_is_stable(self) -> None:
        first = make_node("x", "root", 1)
        second = make_node("y", "root", 1)
        assert [n.id for n in sort_by_created([first, second])] == ["x", "y"]
        assert [n.id for n in sort_by_created([second, first])] == ["y", "x"]


class TestMainThread:
    """Canonical branch-free path selection."""

    def test_follows_earliest_non_branch_child(self) -> None:
        messages = sample_tree()
        path = main_thread_path(messages, "root")
        assert [n.id for n in path] == ["root", "u1", "a1", "u2"]

    def test_never_includes_branch_start(self) -> None:
        messages = make_map(
            make_node("root", None, 0, Role.SYSTEM),
            make_node("u1", "root", 2),
            make_node("b1", "u1", 3, Role.ASSISTANT, branch_text="x"),
            make_node("a1", "u1", 4, Role.ASSISTANT),
        )
        path = main_thread_path(messages, "root")
        assert [n.id for n in path] == ["root", "u1", "a1"]
        assert not any(n.is_branch_start for n in path)

    def test_stops_when_only_branches_remain(self) -> None:
        messages = make_map(
            make_node("root", None, 0, Role.SYSTEM),
            make_node("b1", "root", 1, Role.ASSISTANT, branch_text="x"),
        )
        assert [n.id for n in main_thread_path(messages, "root")] == ["root"]

    def test_missing_root(self) -> None:
        assert main_thread_path(sample_tree(), "missing") == []
        assert main_thread_path({}, None) == []

    def test_latest_message_follows_newest_child(self) -> None:
        messages = sample_tree()
        assert latest_message_id(messages, "root") == "a1b"

    def test_latest_message_of_missing_root(self) -> None:
        assert latest_message_id(sample_tree(), "nope") is None


class TestPruning:
    """Descendants removed when a message is edited."""

    def test_collects_reply_chain(self) -> None:
        messages = make_map(
            make_node("root", None, 0, Role.SYSTEM),
            make_node("A", "root", 1),
            make_node("B", "A", 2, Role.ASSISTANT),
            make_node("C", "B", 3),
        )
        assert set(descendants_for_pruning(messages, "A")) == {"B", "C"}

    def test_keeps_branches_anchored_to_edited_message(self) -> None:
        messages = make_map(
            make_node("root", None, 0, Role.SYSTEM),
            make_node("A", "root", 1),
            make_node("B", "A", 2, Role.ASSISTANT),
            make_node("D", "A", 3, Role.ASSISTANT, branch_text="old"),
            make_node("E", "D", 4),
        )
        assert set(descendants_for_pruning(messages, "A")) == {"B"}

    def test_deeper_branches_go_with_their_anchor(self) -> None:
        messages = make_map(
            make_node("root", None, 0, Role.SYSTEM),
            make_node("A", "root", 1),
            make_node("B", "A", 2, Role.ASSISTANT),
            make_node("D", "B", 3, Role.ASSISTANT, branch_text="reply text"),
            make_node("E", "D", 4),
        )
        collected = set(descendants_for_pruning(messages, "A"))
        assert collected == {"B", "D", "E"}

        remaining = {k: v for k, v in messages.items() if k not in collected}
        assert tree_problems(remaining, "root") == []

    def test_leaf_has_nothing_to_prune(self) -> None:
        assert descendants_for_pruning(sample_tree(), "u2") == []


class TestTreeProblems:
    """Well-formedness checks."""

    def test_well_formed_tree(self) -> None:
        assert tree_problems(sample_tree(), "root") == []

    def test_missing_root(self) -> None:
        problems = tree_problems(sample_tree(), "nope")
        assert problems and "missing" in problems[0]

    def test_missing_parent(self) -> None:
        messages = sample_tree()
        messages["orphan"] = make_node("orphan", "ghost", 9)
        assert any("missing parent" in p for p in tree_problems(messages, "root"))

    def test_second_root(self) -> None:
        messages = sample_tree()
        messages["other"] = make_node("other", None, 9)
        assert any("second root" in p for p in tree_problems(messages, "root"))

    def test_cycle(self) -> None:
        messages = make_map(
            make_node("root", None, 0),
            make_node("a", "b", 1),
            make_node("b", "a", 2),
        )
        assert any("Cycle" in p for p in tree_problems(messages, "root"))

    def test_key_mismatch(self) -> None:
        messages = sample_tree()
        messages["alias"] = messages["u2"]
        assert any("keyed alias" in p for p in tree_problems(messages, "root"))
