"""Conversation persistence.

Signed-in users get a file backend that keeps one YAML file per
conversation under:
  <root>/<user_id>/<conversation_id>.yaml

Guests get a local key-value cache holding a single conversation plus the
active message id. A session uses exactly one of the two.

Loads never raise: unreadable or corrupt data is logged, discarded and
reported as ``None`` so the caller can start a fresh conversation.
"""

from __future__ import annotations

import json
import re
import tempfile
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import yaml

from branchchat.errors import DataCorruptionError, PersistenceError
from branchchat.logging import get_logger
from branchchat.tree.types import Conversation

log = get_logger("storage")

GUEST_CONVERSATION_KEY = "guest_conversation"
GUEST_ACTIVE_MESSAGE_KEY = "guest_active_message_id"
GUEST_MESSAGE_COUNT_KEY = "guest_message_count"
DEFAULT_TITLE = "New Chat"

_SAFE_NAME = re.compile(r"[^A-Za-z0-9._-]")


@runtime_checkable
class ConversationBackend(Protocol):
    """Where a session's conversation is loaded from and saved to."""

    def load(self, user_id: str | None) -> Conversation | None:
        """Most recent conversation for ``user_id``, or None."""
        ...

    def save(self, conversation: Conversation) -> bool:
        """Persist ``conversation``; False on failure."""
        ...


@dataclass
class ConversationSummary:
    """Lightweight conversation metadata for listing."""

    id: str
    title: str
    created_at: datetime
    updated_at: datetime
    message_count: int


def _safe_name(value: str) -> str:
    return _SAFE_NAME.sub("_", value) or "_"


def _write_yaml_atomic(path: Path, data: dict[str, Any]) -> None:
    """Write YAML to a uniquely named temp file and rename it over ``path``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    f = tempfile.NamedTemporaryFile(
        "w", encoding="utf-8", dir=path.parent, prefix=f"{path.name}.", suffix=".tmp", delete=False
    )
    temp_path = Path(f.name)
    try:
        with f:
            yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)
        temp_path.replace(path)
    except Exception:
        if temp_path.exists():
            temp_path.unlink()
        raise


def _read_conversation(path: Path) -> Conversation:
    """Parse and validate one conversation file.

    Raises:
        DataCorruptionError: The file is not valid YAML or not a valid tree.
        OSError: The file cannot be read.
    """
    with open(path, encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise DataCorruptionError(f"Invalid YAML in {path}: {e}") from e
    return Conversation.from_dict(data)


class FileConversationStore:
    """YAML-file backend for signed-in users."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def user_dir(self, user_id: str | None) -> Path:
        return self._root / _safe_name(user_id or "local")

    def conversation_path(self, user_id: str | None, conversation_id: str) -> Path:
        return self.user_dir(user_id) / f"{_safe_name(conversation_id)}.yaml"

    def save(self, conversation: Conversation) -> bool:
        """Atomically write a conversation. Returns False on failure."""
        path = self.conversation_path(conversation.user_id, conversation.id)
        try:
            _write_yaml_atomic(path, conversation.to_dict())
        except (OSError, yaml.YAMLError) as e:
            error = PersistenceError(f"Failed to save conversation {conversation.id}: {e}")
            log.warning("%s", error)
            return False
        log.debug("Saved conversation %s to %s", conversation.id, path)
        return True

    def load(self, user_id: str | None) -> Conversation | None:
        """Load the most recently saved conversation of ``user_id``.

        A corrupt newest file is deleted and None is returned; older
        conversations are not consulted in its place.
        """
        user_dir = self.user_dir(user_id)
        if not user_dir.exists():
            return None
        files = list(user_dir.glob("*.yaml"))
        if not files:
            return None
        newest = max(files, key=lambda p: p.stat().st_mtime)
        return self._load_file(newest)

    def load_conversation(self, user_id: str | None, conversation_id: str) -> Conversation | None:
        """Load one conversation by id, discarding it if corrupt."""
        path = self.conversation_path(user_id, conversation_id)
        if not path.exists():
            return None
        return self._load_file(path)

    def _load_file(self, path: Path) -> Conversation | None:
        try:
            return _read_conversation(path)
        except DataCorruptionError as e:
            self._discard(path, str(e))
            return None
        except OSError as e:
            log.warning("Failed to read conversation %s: %s", path, e)
            return None

    def list_conversations(self, user_id: str | None) -> list[ConversationSummary]:
        """Summaries of every readable conversation, newest first."""
        user_dir = self.user_dir(user_id)
        if not user_dir.exists():
            return []

        summaries: list[ConversationSummary] = []
        for path in user_dir.glob("*.yaml"):
            try:
                conversation = _read_conversation(path)
            except (DataCorruptionError, OSError) as e:
                log.warning("Skipping unreadable conversation %s: %s", path, e)
                continue
            summaries.append(
                ConversationSummary(
                    id=conversation.id,
                    title=conversation.title or DEFAULT_TITLE,
                    created_at=conversation.created_at,
                    updated_at=conversation.updated_at or conversation.created_at,
                    message_count=len(conversation.messages),
                )
            )

        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    def delete_conversation(self, user_id: str | None, conversation_id: str) -> bool:
        path = self.conversation_path(user_id, conversation_id)
        if not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            log.warning("Failed to delete conversation %s: %s", path, e)
            return False
        log.debug("Deleted conversation %s", conversation_id)
        return True

    def _discard(self, path: Path, reason: str) -> None:
        log.warning("Discarding corrupt conversation %s: %s", path, reason)
        try:
            path.unlink()
        except OSError as e:
            log.warning("Failed to remove %s: %s", path, e)


# -----------------------------------------------------------------------------
# Guest cache
# -----------------------------------------------------------------------------


class KeyValueStore(Protocol):
    """Minimal string key-value storage."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...


class MemoryKeyValueStore:
    """In-process key-value store (tests, throwaway sessions)."""

    def __init__(self, data: dict[str, str] | None = None) -> None:
        self.data: dict[str, str] = dict(data or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def remove(self, key: str) -> None:
        self.data.pop(key, None)


class FileKeyValueStore:
    """Key-value store backed by a single YAML mapping file.

    Every access holds a lock so a read-modify-write cycle from the saver's
    worker thread and one from the event loop never interleave.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            log.warning("Unreadable guest cache %s: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str) -> None:
        with self._lock:
            data = self._read()
            data[key] = value
            _write_yaml_atomic(self._path, data)

    def remove(self, key: str) -> None:
        with self._lock:
            data = self._read()
            if key in data:
                del data[key]
                _write_yaml_atomic(self._path, data)


class GuestCache:
    """Single-conversation backend for guests, stored in a KeyValueStore.

    The conversation is stored as JSON text; the active message id and the
    number of completed responses are kept alongside it.
    """

    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    def load(self, user_id: str | None = None) -> Conversation | None:
        raw = self._kv.get(GUEST_CONVERSATION_KEY)
        if not raw:
            return None
        try:
            return Conversation.from_dict(json.loads(raw))
        except (ValueError, DataCorruptionError) as e:
            log.warning("Discarding corrupt guest conversation: %s", e)
            self.clear()
            return None

    def save(self, conversation: Conversation) -> bool:
        try:
            self._kv.set(GUEST_CONVERSATION_KEY, json.dumps(conversation.to_dict()))
        except (OSError, TypeError, ValueError, yaml.YAMLError) as e:
            log.warning("%s", PersistenceError(f"Failed to cache guest conversation: {e}"))
            return False
        return True

    def load_active_message_id(self) -> str | None:
        return self._kv.get(GUEST_ACTIVE_MESSAGE_KEY)

    def save_active_message_id(self, message_id: str | None) -> None:
        try:
            if message_id:
                self._kv.set(GUEST_ACTIVE_MESSAGE_KEY, message_id)
            else:
                self._kv.remove(GUEST_ACTIVE_MESSAGE_KEY)
        except (OSError, yaml.YAMLError) as e:
            log.warning("Failed to cache active message id: %s", e)

    def message_count(self) -> int:
        raw = self._kv.get(GUEST_MESSAGE_COUNT_KEY)
        if raw is None:
            return 0
        try:
            return max(int(raw), 0)
        except ValueError:
            self._kv.remove(GUEST_MESSAGE_COUNT_KEY)
            return 0

    def set_message_count(self, count: int) -> None:
        try:
            self._kv.set(GUEST_MESSAGE_COUNT_KEY, str(count))
        except (OSError, yaml.YAMLError) as e:
            log.warning("Failed to cache guest message count: %s", e)

    def clear(self) -> None:
        """Remove the cached conversation and active id (the count survives)."""
        self._kv.remove(GUEST_CONVERSATION_KEY)
        self._kv.remove(GUEST_ACTIVE_MESSAGE_KEY)
