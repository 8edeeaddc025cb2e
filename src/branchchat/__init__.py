"""BranchChat: LLM chat as a branching conversation tree."""

__version__ = "0.1.0"

# Public API
from branchchat.config import Config, get_config, load_config
from branchchat.core import LiteLLMProvider, LLMError, LLMProvider, Message, StreamChunk
from branchchat.errors import BranchChatError, DataCorruptionError, PersistenceError
from branchchat.session import (
    ChatSession,
    DebouncedSaver,
    FileConversationStore,
    GuestCache,
    StreamingCoordinator,
    StreamOutcome,
)
from branchchat.tree import (
    BranchIndex,
    BranchNavigationStack,
    Conversation,
    MessageNode,
    NodeMetadata,
    Role,
    TreeStore,
)

__all__ = [
    # Tree
    "Conversation",
    "MessageNode",
    "NodeMetadata",
    "Role",
    "TreeStore",
    "BranchIndex",
    "BranchNavigationStack",
    # Session
    "ChatSession",
    "StreamingCoordinator",
    "StreamOutcome",
    "DebouncedSaver",
    "FileConversationStore",
    "GuestCache",
    # Config
    "Config",
    "load_config",
    "get_config",
    # LLM
    "LLMProvider",
    "LiteLLMProvider",
    "LLMError",
    "Message",
    "StreamChunk",
    # Errors
    "BranchChatError",
    "PersistenceError",
    "DataCorruptionError",
]
