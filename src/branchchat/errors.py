"""Exception types for BranchChat.

Structural problems (unknown node ids, missing parents) are not exceptions:
tree operations return ``None``/``False`` and log a warning instead. Stream
failures are reported as ``LLMError`` values by the streaming layer.
"""

from __future__ import annotations


class BranchChatError(Exception):
    """Base class for BranchChat errors."""


class PersistenceError(BranchChatError):
    """A conversation could not be saved or loaded by a backend."""


class DataCorruptionError(BranchChatError):
    """Persisted conversation data is malformed and must be discarded."""
