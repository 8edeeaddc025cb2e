"""Branching conversation tree: data model, path resolution, mutations, navigation."""

from branchchat.tree.branches import (
    BranchIndex,
    BranchRef,
    branch_anchors,
    branch_messages,
    build_branch_context,
    build_explain_context,
    find_branch_start,
)
from branchchat.tree.navigation import BranchFrame, BranchNavigationStack, truncate_label
from branchchat.tree.paths import (
    children_of,
    depth_of,
    latest_message_id,
    main_thread_path,
    path_to_node,
    tree_problems,
)
from branchchat.tree.store import ACTIVE, AddMessageResult, TreeStore
from branchchat.tree.types import (
    BranchAnchor,
    Conversation,
    ImageAttachment,
    MessageNode,
    NodeMetadata,
    Role,
)

__all__ = [
    # Data model
    "BranchAnchor",
    "Conversation",
    "ImageAttachment",
    "MessageNode",
    "NodeMetadata",
    "Role",
    # Paths
    "children_of",
    "depth_of",
    "latest_message_id",
    "main_thread_path",
    "path_to_node",
    "tree_problems",
    # Store
    "ACTIVE",
    "AddMessageResult",
    "TreeStore",
    # Branches
    "BranchIndex",
    "BranchRef",
    "branch_anchors",
    "branch_messages",
    "build_branch_context",
    "build_explain_context",
    "find_branch_start",
    # Navigation
    "BranchFrame",
    "BranchNavigationStack",
    "truncate_label",
]
