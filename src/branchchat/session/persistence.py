"""Debounced conversation saving.

Every change re-arms a short timer; when it fires, a snapshot of the
conversation is written by the backend in a worker thread. Rapid mutations
(streamed chunks, typing) collapse into one write, and the tree is never
blocked on I/O.
"""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING

from branchchat.errors import PersistenceError
from branchchat.logging import get_logger

if TYPE_CHECKING:
    from branchchat.session.storage import ConversationBackend
    from branchchat.tree.store import TreeStore

log = get_logger("persistence")

DEFAULT_SAVE_DELAY = 1.5  # seconds


class DebouncedSaver:
    """Coalesces saves of one TreeStore's conversation.

    Usage:
        saver = DebouncedSaver(backend, delay=1.5)
        store.subscribe(saver.schedule)
        ...
        await saver.flush()
    """

    def __init__(self, backend: ConversationBackend, delay: float = DEFAULT_SAVE_DELAY) -> None:
        self._backend = backend
        self._delay = delay
        self._store: TreeStore | None = None
        self._timer: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self.save_count = 0

    @property
    def backend(self) -> ConversationBackend:
        return self._backend

    @property
    def pending(self) -> bool:
        """True while a save is scheduled but has not started."""
        return self._timer is not None and not self._timer.done()

    def schedule(self, store: TreeStore) -> None:
        """(Re)start the timer for a save of ``store``.

        Does nothing unless the conversation has unsaved changes. Outside a
        running event loop the store is remembered for the next flush().
        """
        if not store.is_dirty:
            return
        self._store = store
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("No running event loop; save deferred until flush")
            return
        self.cancel()
        self._timer = loop.create_task(self._delayed_save())

    async def _delayed_save(self) -> None:
        await asyncio.sleep(self._delay)
        self._timer = None
        await self._save()

    def cancel(self) -> None:
        """Drop the scheduled save, if any. An in-progress write finishes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def flush(self, store: TreeStore | None = None) -> bool:
        """Save now instead of waiting for the timer."""
        if store is not None:
            self._store = store
        self.cancel()
        return await self._save()

    async def _save(self) -> bool:
        async with self._lock:
            store = self._store
            conversation = store.conversation if store else None
            if store is None or conversation is None or not store.is_dirty:
                return True

            revision = conversation.revision
            snapshot = copy.deepcopy(conversation)
            try:
                saved = await asyncio.to_thread(self._backend.save, snapshot)
            except Exception as e:
                log.warning("%s", PersistenceError(f"Save of {conversation.id} failed: {e}"))
                return False

            if not saved:
                log.warning("Save of conversation %s failed; will retry on next change", conversation.id)
                return False

            self.save_count += 1
            store.mark_saved(revision)
            log.debug("Saved conversation %s at revision %d", conversation.id, revision)
            return True
