"""Conversation tree data model.

A conversation is a flat map of ``MessageNode`` objects keyed by id. The tree
structure is defined entirely by ``parent_id`` links; no child lists or
ordering arrays are stored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from branchchat.errors import DataCorruptionError


class Role(Enum):
    """Message role in a conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class BranchAnchor:
    """Provenance of the text selection a branch was started from."""

    selected_text: str
    selection_start: int | None = None
    selection_end: int | None = None


@dataclass(frozen=True, slots=True)
class ImageAttachment:
    """Media reference attached to a message."""

    url: str
    mime_type: str | None = None
    name: str | None = None


@dataclass(slots=True)
class NodeMetadata:
    """Typed metadata attached to a message node.

    Attributes:
        branch_id: Groups every node that belongs to one alternate branch.
        anchor: Selection provenance. Only branch-start nodes carry one.
        images: Attached media references.
        is_context_message: Synthetic node used only to build a model request.
    """

    branch_id: str | None = None
    anchor: BranchAnchor | None = None
    images: list[ImageAttachment] = field(default_factory=list)
    is_context_message: bool = False

    @property
    def is_branch_start(self) -> bool:
        return self.anchor is not None

    @property
    def selected_text(self) -> str | None:
        return self.anchor.selected_text if self.anchor else None

    def for_response(self) -> NodeMetadata:
        """Metadata for a generated reply: keeps the branch id, drops selection flags."""
        return NodeMetadata(branch_id=self.branch_id)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.branch_id is not None:
            data["branch_id"] = self.branch_id
        if self.anchor is not None:
            data["is_branch_start"] = True
            data["selected_text"] = self.anchor.selected_text
            data["selection_start"] = self.anchor.selection_start
            data["selection_end"] = self.anchor.selection_end
        if self.images:
            data["images"] = [
                {"url": img.url, "mime_type": img.mime_type, "name": img.name}
                for img in self.images
            ]
        if self.is_context_message:
            data["is_context_message"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> NodeMetadata:
        if not data:
            return cls()
        anchor = None
        if data.get("is_branch_start"):
            anchor = BranchAnchor(
                selected_text=data.get("selected_text") or "",
                selection_start=data.get("selection_start"),
                selection_end=data.get("selection_end"),
            )
        images = [
            ImageAttachment(url=img["url"], mime_type=img.get("mime_type"), name=img.get("name"))
            for img in data.get("images") or []
        ]
        return cls(
            branch_id=data.get("branch_id"),
            anchor=anchor,
            images=images,
            is_context_message=bool(data.get("is_context_message", False)),
        )


@dataclass(slots=True)
class MessageNode:
    """A single turn in the conversation tree.

    ``id``, ``role``, ``parent_id`` and ``created_at`` never change after
    creation. ``content`` grows while a reply streams in and is replaced when
    a user message is edited; ``thinking_content`` is replaced wholesale.
    """

    id: str
    role: Role
    content: str
    parent_id: str | None
    created_at: datetime
    thinking_content: str | None = None
    metadata: NodeMetadata = field(default_factory=NodeMetadata)

    @property
    def is_branch_start(self) -> bool:
        return self.metadata.is_branch_start

    @property
    def branch_id(self) -> str | None:
        return self.metadata.branch_id

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "parent_id": self.parent_id,
            "created_at": self.created_at.isoformat(),
        }
        if self.thinking_content:
            data["thinking_content"] = self.thinking_content
        metadata = self.metadata.to_dict()
        if metadata:
            data["metadata"] = metadata
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MessageNode:
        return cls(
            id=str(data["id"]),
            role=Role(data["role"]),
            content=data.get("content") or "",
            parent_id=data.get("parent_id"),
            created_at=_parse_time(data["created_at"]),
            thinking_content=data.get("thinking_content"),
            metadata=NodeMetadata.from_dict(data.get("metadata")),
        )


@dataclass
class Conversation:
    """Aggregate root of one branching conversation.

    Attributes:
        id: Stable identifier used as the persistence key
        root_message_id: The unique node with ``parent_id is None``
        messages: Node map, the only source of truth for structure
        editing_message_id: User node currently in edit mode, if any
        user_id: Owner for remote persistence; None for guests
        has_content_changes: Dirty flag, set by mutations and cleared by saves
        revision: Bumped on every persisted-content mutation
    """

    id: str
    root_message_id: str
    messages: dict[str, MessageNode]
    created_at: datetime
    updated_at: datetime | None = None
    title: str | None = None
    user_id: str | None = None
    editing_message_id: str | None = None
    has_content_changes: bool = False
    revision: int = 0

    @property
    def root(self) -> MessageNode:
        return self.messages[self.root_message_id]

    def touch(self, now: datetime) -> None:
        """Record a persistable change."""
        self.updated_at = now
        self.has_content_changes = True
        self.revision += 1

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence (edit mode and dirty state are session-only)."""
        return {
            "id": self.id,
            "title": self.title,
            "user_id": self.user_id,
            "root_message_id": self.root_message_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "messages": [node.to_dict() for node in self.messages.values()],
        }

    @classmethod
    def from_dict(cls, data: Any) -> Conversation:
        """Rebuild and validate a conversation.

        Raises:
            DataCorruptionError: If any field is missing or malformed, or the
                node map is not a single well-formed tree.
        """
        from branchchat.tree.paths import tree_problems

        if not isinstance(data, dict):
            raise DataCorruptionError(f"Expected a mapping, got {type(data).__name__}")
        try:
            messages: dict[str, MessageNode] = {}
            for node_data in data["messages"]:
                node = MessageNode.from_dict(node_data)
                if node.id in messages:
                    raise DataCorruptionError(f"Duplicate message id {node.id}")
                messages[node.id] = node
            updated_at = data.get("updated_at")
            conversation = cls(
                id=str(data["id"]),
                root_message_id=str(data["root_message_id"]),
                messages=messages,
                created_at=_parse_time(data["created_at"]),
                updated_at=_parse_time(updated_at) if updated_at else None,
                title=data.get("title"),
                user_id=data.get("user_id"),
            )
        except DataCorruptionError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise DataCorruptionError(f"Malformed conversation data: {e!r}") from e

        problems = tree_problems(conversation.messages, conversation.root_message_id)
        if problems:
            raise DataCorruptionError("; ".join(problems))
        return conversation


def _parse_time(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))
