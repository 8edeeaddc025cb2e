"""Session layer: streaming, persistence and chat orchestration."""

from branchchat.session.chat import IDLE, ChatSession, Idle, SessionState, Streaming
from branchchat.session.persistence import DebouncedSaver
from branchchat.session.storage import (
    ConversationBackend,
    ConversationSummary,
    FileConversationStore,
    FileKeyValueStore,
    GuestCache,
    KeyValueStore,
    MemoryKeyValueStore,
)
from branchchat.session.streaming import StreamingCoordinator, StreamOutcome

__all__ = [
    # Orchestration
    "ChatSession",
    "SessionState",
    "Idle",
    "Streaming",
    "IDLE",
    # Streaming
    "StreamingCoordinator",
    "StreamOutcome",
    # Persistence
    "ConversationBackend",
    "ConversationSummary",
    "DebouncedSaver",
    "FileConversationStore",
    "GuestCache",
    "KeyValueStore",
    "FileKeyValueStore",
    "MemoryKeyValueStore",
]
