"""Owner of the canonical conversation state.

TreeStore holds the node map and the active-node pointer and exposes every
mutation as a single synchronous transition. Callers that stream model
output, render views or persist data go through this API; none of them touch
the node map directly.

Failed lookups (unknown ids, missing parents) never raise. They log a warning
and return ``None``/``False`` with the state left unchanged.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from branchchat.logging import get_logger
from branchchat.tree.paths import (
    children_of,
    descendants_for_pruning,
    latest_message_id,
    path_to_node,
    sort_by_created,
)
from branchchat.tree.types import (
    BranchAnchor,
    Conversation,
    MessageNode,
    NodeMetadata,
    Role,
)

log = get_logger("tree")

ChangeListener = Callable[["TreeStore"], None]


class _ActiveParent:
    """Sentinel: attach to the active node."""

    def __repr__(self) -> str:
        return "ACTIVE"


ACTIVE = _ActiveParent()


@dataclass(slots=True)
class AddMessageResult:
    """A freshly created node plus its root-to-node path (for model requests)."""

    new_node: MessageNode
    path: list[MessageNode]


def _new_id() -> str:
    return str(uuid.uuid4())


class TreeStore:
    """Conversation tree with an active node and invariant-preserving mutations.

    Usage:
        store = TreeStore()
        store.initialize()
        result = store.add_message(Role.USER, "Hi")
        store.create_branch(result.new_node.id, "Hi")
    """

    def __init__(
        self,
        *,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._id_factory = id_factory or _new_id
        self._clock = clock or datetime.now
        self._conversation: Conversation | None = None
        self._active_id: str | None = None
        self._structure_version = 0
        self._path_cache: tuple[int, str | None, list[MessageNode]] | None = None
        self._listeners: list[ChangeListener] = []

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def conversation(self) -> Conversation | None:
        return self._conversation

    @property
    def messages(self) -> dict[str, MessageNode]:
        return self._conversation.messages if self._conversation else {}

    @property
    def active_message_id(self) -> str | None:
        return self._active_id

    @property
    def editing_message_id(self) -> str | None:
        return self._conversation.editing_message_id if self._conversation else None

    @property
    def is_dirty(self) -> bool:
        return bool(self._conversation and self._conversation.has_content_changes)

    @property
    def structure_version(self) -> int:
        """Incremented whenever nodes are added or removed."""
        return self._structure_version

    @property
    def current_path(self) -> list[MessageNode]:
        """Root-to-active path, memoized on structure version and active id."""
        key = (self._structure_version, self._active_id)
        if self._path_cache is None or self._path_cache[:2] != key:
            self._path_cache = (*key, path_to_node(self.messages, self._active_id))
        return list(self._path_cache[2])

    def node(self, message_id: str | None) -> MessageNode | None:
        if not message_id:
            return None
        return self.messages.get(message_id)

    def children_of(self, message_id: str) -> list[MessageNode]:
        """Direct children, oldest first."""
        return sort_by_created(children_of(self.messages, message_id))

    def has_children(self, message_id: str) -> bool:
        return any(node.parent_id == message_id for node in self.messages.values())

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self, user_id: str | None = None) -> Conversation:
        """Replace the state with a fresh conversation rooted at an empty system node."""
        now = self._clock()
        root = MessageNode(
            id=self._id_factory(),
            role=Role.SYSTEM,
            content="",
            parent_id=None,
            created_at=now,
        )
        self._conversation = Conversation(
            id=self._id_factory(),
            root_message_id=root.id,
            messages={root.id: root},
            created_at=now,
            user_id=user_id,
        )
        self._conversation.touch(now)
        self._active_id = root.id
        self._structure_changed()
        log.debug("Initialized conversation %s", self._conversation.id)
        self._notify()
        return self._conversation

    def start_new_conversation(self) -> Conversation:
        """Wholesale replacement, keeping the current owner."""
        user_id = self._conversation.user_id if self._conversation else None
        return self.initialize(user_id)

    def load(self, conversation: Conversation, active_message_id: str | None = None) -> None:
        """Adopt a loaded conversation.

        The active node is ``active_message_id`` when it exists in the map,
        otherwise the most recent main-line message.
        """
        self._conversation = conversation
        conversation.editing_message_id = None
        conversation.has_content_changes = False
        if active_message_id and active_message_id in conversation.messages:
            self._active_id = active_message_id
        else:
            self._active_id = latest_message_id(conversation.messages, conversation.root_message_id)
        self._structure_changed()
        log.debug(
            "Loaded conversation %s (%d messages)", conversation.id, len(conversation.messages)
        )
        self._notify()

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def add_message(
        self,
        role: Role | str,
        content: str = "",
        *,
        metadata: NodeMetadata | None = None,
        thinking_content: str | None = None,
        parent_id: str | None | _ActiveParent = ACTIVE,
    ) -> AddMessageResult | None:
        """Create a node and make it the active one.

        Args:
            role: Message role.
            content: Initial content.
            metadata: Optional typed metadata.
            thinking_content: Optional reasoning trace.
            parent_id: Parent node id. Defaults to the active node.

        Returns:
            The new node and its root-to-node path, or None if the parent is
            unknown. The first message of an empty store becomes the root of
            a new conversation.
        """
        role = Role(role)
        now = self._clock()
        new_id = self._id_factory()

        if self._conversation is None:
            if isinstance(parent_id, str):
                log.warning("Cannot add message: parent %s not found (no conversation)", parent_id)
                return None
            node = MessageNode(
                id=new_id,
                role=role,
                content=content,
                parent_id=None,
                created_at=now,
                thinking_content=thinking_content,
                metadata=metadata or NodeMetadata(),
            )
            self._conversation = Conversation(
                id=self._id_factory(),
                root_message_id=new_id,
                messages={new_id: node},
                created_at=now,
            )
        else:
            effective_parent = self._active_id if parent_id is ACTIVE else parent_id
            if effective_parent is None:
                log.warning("Cannot add a second root to conversation %s", self._conversation.id)
                return None
            if effective_parent not in self._conversation.messages:
                log.warning("Cannot add message: parent %s not found", effective_parent)
                return None
            node = MessageNode(
                id=new_id,
                role=role,
                content=content,
                parent_id=effective_parent,
                created_at=now,
                thinking_content=thinking_content,
                metadata=metadata or NodeMetadata(),
            )
            self._conversation.messages[new_id] = node

        self._conversation.touch(now)
        self._active_id = new_id
        self._structure_changed()
        self._notify()
        return AddMessageResult(new_node=node, path=self.current_path)

    def update_message_content(self, message_id: str, chunk: str) -> None:
        """Append ``chunk`` to a node's content."""
        node = self.node(message_id)
        if node is None or self._conversation is None:
            log.warning("Cannot append content: message %s not found", message_id)
            return
        node.content += chunk
        self._conversation.touch(self._clock())
        self._notify()

    def update_message_thinking_content(self, message_id: str, thinking: str) -> None:
        """Replace a node's thinking content with the full accumulated text."""
        node = self.node(message_id)
        if node is None or self._conversation is None:
            log.warning("Cannot set thinking content: message %s not found", message_id)
            return
        if node.thinking_content == thinking:
            return
        node.thinking_content = thinking
        self._conversation.touch(self._clock())
        self._notify()

    def create_branch(
        self,
        source_message_id: str,
        selected_text: str,
        selection_start: int | None = None,
        selection_end: int | None = None,
    ) -> AddMessageResult | None:
        """Start a branch anchored to a selection inside ``source_message_id``.

        Creates an empty assistant node tagged as the branch start and makes
        it active. Returns None if the source message is unknown.
        """
        if self._conversation is None or source_message_id not in self._conversation.messages:
            log.warning("Cannot create branch: source message %s not found", source_message_id)
            return None

        metadata = NodeMetadata(
            branch_id=self._new_branch_id(),
            anchor=BranchAnchor(
                selected_text=selected_text,
                selection_start=selection_start,
                selection_end=selection_end,
            ),
        )
        result = self.add_message(Role.ASSISTANT, "", metadata=metadata, parent_id=source_message_id)
        if result:
            log.debug(
                "Created branch %s under %s", metadata.branch_id, source_message_id
            )
        return result

    def _new_branch_id(self) -> str:
        taken = {node.branch_id for node in self.messages.values() if node.branch_id}
        while True:
            branch_id = f"branch-{self._id_factory()}"
            if branch_id not in taken:
                return branch_id

    def select_branch(self, message_id: str) -> bool:
        """Move the active pointer to an existing node."""
        if message_id not in self.messages:
            log.warning("Cannot select message %s: not found", message_id)
            return False
        if self._active_id != message_id:
            self._active_id = message_id
            self._notify()
        return True

    def start_editing_message(self, message_id: str) -> bool:
        node = self.node(message_id)
        if node is None or node.role is not Role.USER or self._conversation is None:
            log.warning("Cannot edit message %s: not an existing user message", message_id)
            return False
        self._conversation.editing_message_id = message_id
        self._notify()
        return True

    def cancel_editing_message(self) -> None:
        if self._conversation and self._conversation.editing_message_id:
            self._conversation.editing_message_id = None
            self._notify()

    def save_edited_message(self, message_id: str, new_content: str) -> bool:
        """Replace a user message's content and prune the replies that depended on it.

        Every descendant is deleted except branches anchored directly to the
        edited message. The edited node becomes active and edit mode is cleared.
        """
        node = self.node(message_id)
        if node is None or node.role is not Role.USER or self._conversation is None:
            log.warning("Cannot save edit for %s: not an existing user message", message_id)
            return False

        node.content = new_content
        pruned = descendants_for_pruning(self._conversation.messages, message_id)
        for pruned_id in pruned:
            del self._conversation.messages[pruned_id]
        if pruned:
            log.debug("Edit of %s pruned %d descendant(s)", message_id, len(pruned))

        self._active_id = message_id
        self._conversation.editing_message_id = None
        self._conversation.touch(self._clock())
        self._structure_changed()
        self._notify()
        return True

    def update_title(self, title: str) -> None:
        if self._conversation is None or self._conversation.title == title:
            return
        self._conversation.title = title
        self._conversation.touch(self._clock())
        self._notify()

    def mark_saved(self, revision: int) -> None:
        """Clear the dirty flag if nothing changed since ``revision`` was snapshotted."""
        if self._conversation and self._conversation.revision == revision:
            self._conversation.has_content_changes = False

    # -------------------------------------------------------------------------
    # Change notification
    # -------------------------------------------------------------------------

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a callback run after every state change.

        Returns:
            A function that unregisters the callback.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                log.warning("Tree change listener error: %s", e)

    def _structure_changed(self) -> None:
        self._structure_version += 1
