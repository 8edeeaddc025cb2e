"""Chat session orchestration.

ChatSession ties a TreeStore to a model provider, a persistence backend and
the branch navigation stack. It owns the only "a response is streaming"
flag, so at most one stream runs per conversation.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from branchchat.config.schema import Config
from branchchat.core.llm.errors import ErrorType, LLMError
from branchchat.core.llm.models import is_reasoning_model
from branchchat.core.llm.provider import to_messages
from branchchat.logging import get_logger
from branchchat.session.persistence import DebouncedSaver
from branchchat.session.storage import GuestCache, MemoryKeyValueStore
from branchchat.session.streaming import StreamingCoordinator, StreamOutcome
from branchchat.tree.branches import (
    BranchIndex,
    branch_messages,
    build_branch_context,
    build_explain_context,
)
from branchchat.tree.navigation import BranchNavigationStack
from branchchat.tree.paths import main_thread_path
from branchchat.tree.store import TreeStore
from branchchat.tree.types import ImageAttachment, NodeMetadata, Role

if TYPE_CHECKING:
    from branchchat.core.llm.provider import LLMProvider
    from branchchat.session.storage import ConversationBackend
    from branchchat.tree.store import AddMessageResult
    from branchchat.tree.types import Conversation, MessageNode

log = get_logger("chat")


@dataclass(frozen=True, slots=True)
class Idle:
    """No response is being generated."""


@dataclass(frozen=True, slots=True)
class Streaming:
    """A response is being generated."""

    stream_id: str


SessionState = Idle | Streaming

IDLE = Idle()


class ChatSession:
    """One user's view of one conversation.

    Signed-in sessions (``user_id`` set) persist through ``backend``; guest
    sessions persist through ``guest_cache``. The two are never mixed.

    Usage:
        session = ChatSession(provider, backend=FileConversationStore(path), user_id="alice")
        await session.load()
        await session.send_message("What is a monad?")
        answer = session.displayed_messages()[-1]
        await session.create_branch(answer.id, "monad", auto_explain=True)
        session.go_back()
        await session.close()
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        user_id: str | None = None,
        backend: ConversationBackend | None = None,
        guest_cache: GuestCache | None = None,
        config: Config | None = None,
        store: TreeStore | None = None,
        reasoning: bool | None = None,
    ) -> None:
        self._provider = provider
        self._user_id = user_id
        self._config = config or Config()
        self._store = store or TreeStore()

        if user_id is not None:
            if backend is None:
                raise ValueError("A signed-in session needs a conversation backend")
            self._guest_cache: GuestCache | None = None
            persistence: ConversationBackend = backend
        else:
            self._guest_cache = guest_cache or GuestCache(MemoryKeyValueStore())
            persistence = self._guest_cache

        self._saver = DebouncedSaver(persistence, delay=self._config.session.save_debounce)
        self._unsubscribe = self._store.subscribe(self._on_store_change)

        if reasoning is None:
            reasoning = is_reasoning_model(provider.model)
        self._coordinator = StreamingCoordinator(self._store, reasoning=reasoning)
        self._index = BranchIndex(self._store)
        self._nav = BranchNavigationStack()

        self._state: SessionState = IDLE
        self._showing_main_thread = False
        self._last_error: LLMError | None = None
        self._last_outcome: StreamOutcome | None = None
        self._saved_active_id: str | None = None

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store(self) -> TreeStore:
        return self._store

    @property
    def provider(self) -> LLMProvider:
        return self._provider

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_guest(self) -> bool:
        return self._user_id is None

    @property
    def saver(self) -> DebouncedSaver:
        return self._saver

    @property
    def branches(self) -> BranchIndex:
        return self._index

    @property
    def navigation(self) -> BranchNavigationStack:
        return self._nav

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_streaming(self) -> bool:
        return isinstance(self._state, Streaming)

    @property
    def showing_main_thread(self) -> bool:
        return self._showing_main_thread

    @property
    def last_error(self) -> LLMError | None:
        """Most recent stream or send failure, until dismissed."""
        return self._last_error

    @property
    def last_outcome(self) -> StreamOutcome | None:
        return self._last_outcome

    @property
    def guest_message_count(self) -> int:
        return self._guest_cache.message_count() if self._guest_cache else 0

    @property
    def guest_limit_warning(self) -> str | None:
        """Usage notice once a guest has used 80% of the message limit."""
        if self._guest_cache is None:
            return None
        limit = self._config.session.guest_message_limit
        count = self._guest_cache.message_count()
        if count >= limit * 0.8:
            return f"{count} / {limit} messages used"
        return None

    def dismiss_error(self) -> None:
        self._last_error = None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def load(self) -> Conversation:
        """Load the saved conversation, or start a fresh one if there is none."""
        conversation: Conversation | None
        active_id: str | None = None
        backend = self._saver.backend

        try:
            if self._guest_cache is not None:
                conversation = self._guest_cache.load()
                active_id = self._guest_cache.load_active_message_id()
            else:
                conversation = await asyncio.to_thread(backend.load, self._user_id)
        except Exception as e:
            log.warning("Failed to load conversation for %s: %s", self._user_id or "guest", e)
            conversation = None

        if conversation is None:
            log.info("Starting a new conversation for %s", self._user_id or "guest")
            self._store.initialize(self._user_id)
        else:
            if self._user_id is not None:
                conversation.user_id = self._user_id
            self._store.load(conversation, active_id)

        self._nav = BranchNavigationStack.rebuild(
            self._store.messages, self._store.active_message_id
        )
        self._showing_main_thread = False
        conversation = self._store.conversation
        assert conversation is not None
        return conversation

    async def new_conversation(self) -> Conversation:
        """Save the current conversation and replace it with a fresh one."""
        if self.is_streaming:
            log.warning("Cannot start a new conversation while a response is streaming")
            assert self._store.conversation is not None
            return self._store.conversation
        await self._saver.flush(self._store)
        conversation = self._store.start_new_conversation()
        self._nav.clear()
        self._showing_main_thread = False
        self._last_error = None
        return conversation

    async def close(self) -> None:
        """Write pending changes and detach from the store."""
        await self._saver.flush(self._store)
        self._unsubscribe()

    def _on_store_change(self, store: TreeStore) -> None:
        self._saver.schedule(store)
        if self._guest_cache is not None and store.active_message_id != self._saved_active_id:
            self._saved_active_id = store.active_message_id
            self._guest_cache.save_active_message_id(store.active_message_id)

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def send_message(
        self,
        text: str,
        images: list[ImageAttachment] | None = None,
    ) -> StreamOutcome | None:
        """Add a user message at the active node and stream the reply.

        Inside a branch the message joins the branch and the model sees the
        branch context instead of the full path.

        Returns:
            The stream outcome, or None if the message was not sent (already
            streaming, empty input, guest limit reached).
        """
        if self.is_streaming:
            log.warning("Ignoring send while a response is streaming")
            return None
        if not text.strip() and not images:
            return None

        self._last_error = None
        self._showing_main_thread = False

        if self._guest_cache is not None:
            limit = self._config.session.guest_message_limit
            count = self._guest_cache.message_count()
            if count >= limit:
                self._last_error = LLMError(
                    type=ErrorType.QUOTA_EXCEEDED,
                    message=(
                        f"Message limit reached ({count}/{limit}). "
                        "Please log in or register to continue."
                    ),
                )
                return None

        if self._store.conversation is None:
            self._store.initialize(self._user_id)

        frame = self._nav.current
        branch_id = frame.branch_id if frame else None
        metadata = NodeMetadata(branch_id=branch_id, images=list(images or []))

        result = self._store.add_message(Role.USER, text, metadata=metadata)
        if result is None:
            self._last_error = LLMError(
                type=ErrorType.UNKNOWN, message="Failed to add user message locally."
            )
            return None

        if branch_id:
            path = build_branch_context(
                self._store.messages,
                branch_id,
                result.new_node,
                self._config.session.context_depth,
            )
        else:
            path = result.path

        return await self._stream_response(result.new_node.id, path, metadata)

    async def _stream_response(
        self,
        parent_id: str,
        path: list[MessageNode],
        metadata: NodeMetadata | None,
    ) -> StreamOutcome:
        self._state = Streaming(stream_id=str(uuid.uuid4()))
        self._coordinator.start(parent_id, path, metadata)
        try:
            try:
                stream = self._provider.stream(
                    to_messages(path), max_tokens=self._config.llm.max_tokens
                )
            except Exception as e:
                outcome = self._coordinator.on_error(e)
            else:
                outcome = await self._coordinator.consume(stream)
        finally:
            self._state = IDLE

        self._last_outcome = outcome
        if outcome.error is not None:
            self._last_error = outcome.error
        elif self._guest_cache is not None:
            self._guest_cache.set_message_count(self._guest_cache.message_count() + 1)
        return outcome

    # -------------------------------------------------------------------------
    # Branching and navigation
    # -------------------------------------------------------------------------

    async def create_branch(
        self,
        source_message_id: str,
        selected_text: str,
        selection_start: int | None = None,
        selection_end: int | None = None,
        *,
        auto_explain: bool = False,
    ) -> AddMessageResult | None:
        """Branch off a selection in ``source_message_id`` and enter the branch.

        With ``auto_explain`` the model is asked to explain the selection and
        its answer becomes the first reply inside the branch.
        """
        if self.is_streaming:
            log.warning("Cannot create a branch while a response is streaming")
            return None
        if not selected_text:
            log.warning("Cannot create a branch from an empty selection")
            return None

        result = self._store.create_branch(
            source_message_id, selected_text, selection_start, selection_end
        )
        if result is None:
            return None

        self._nav.enter(result, selected_text)
        self._showing_main_thread = False

        if auto_explain:
            self._last_error = None
            path = build_explain_context(self._store.messages, result.new_node)
            await self._stream_response(result.new_node.id, path, result.new_node.metadata)
        return result

    def go_back(self) -> str | None:
        """Leave the current branch; returns the message it was anchored to."""
        self._showing_main_thread = False
        return self._nav.pop(self._store)

    def navigate_to(self, depth: int) -> str | None:
        """Jump to a breadcrumb (0 is the main thread)."""
        self._showing_main_thread = False
        return self._nav.navigate_to(depth, self._store)

    def show_main_thread(self) -> list[MessageNode]:
        """Leave all branches and show the canonical branch-free thread."""
        self._nav.clear()
        self._nav.navigate_to(0, self._store)
        self._showing_main_thread = True
        return self.displayed_messages()

    def select_message(self, message_id: str) -> bool:
        """Make an existing message active and rebuild the breadcrumbs for it."""
        if not self._store.select_branch(message_id):
            return False
        self._nav = BranchNavigationStack.rebuild(self._store.messages, message_id)
        self._showing_main_thread = False
        return True

    def breadcrumbs(self) -> list[str]:
        return self._nav.labels()

    def displayed_messages(self) -> list[MessageNode]:
        """Messages the current view shows, oldest first."""
        frame = self._nav.current
        if frame is not None:
            return branch_messages(self._store.messages, frame.parent_id, frame.branch_id)
        conversation = self._store.conversation
        if self._showing_main_thread and conversation is not None:
            return main_thread_path(conversation.messages, conversation.root_message_id)
        return self._store.current_path

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def start_edit(self, message_id: str) -> bool:
        if self.is_streaming:
            log.warning("Cannot edit message %s while a response is streaming", message_id)
            return False
        return self._store.start_editing_message(message_id)

    def cancel_edit(self) -> None:
        self._store.cancel_editing_message()

    async def save_edit(
        self,
        message_id: str,
        content: str,
        *,
        regenerate: bool = True,
    ) -> bool:
        """Replace a user message, prune its replies and optionally regenerate.

        Rejected while a response is streaming.
        """
        if self.is_streaming:
            log.warning("Cannot save edit of %s while a response is streaming", message_id)
            return False
        if not self._store.save_edited_message(message_id, content):
            return False

        self._nav = BranchNavigationStack.rebuild(self._store.messages, message_id)
        self._showing_main_thread = False

        if regenerate:
            self._last_error = None
            edited = self._store.node(message_id)
            assert edited is not None
            branch_id = edited.branch_id
            if branch_id:
                path = build_branch_context(
                    self._store.messages, branch_id, edited, self._config.session.context_depth
                )
            else:
                path = self._store.current_path
            await self._stream_response(message_id, path, edited.metadata)
        return True

    def update_title(self, title: str) -> None:
        self._store.update_title(title.strip())
