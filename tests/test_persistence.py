"""Tests for DebouncedSaver."""

from __future__ import annotations

import asyncio

from branchchat.session.persistence import DebouncedSaver
from branchchat.tree.store import TreeStore
from branchchat.tree.types import Conversation, Role
from tests.utils import build_linear_store

DELAY = 0.01


class RecordingBackend:
    """Backend double that records saved snapshots."""

    def __init__(self, result: bool = True) -> None:
        self.result = result
        self.saved: list[Conversation] = []
        self.on_save = None

    def load(self, user_id: str | None) -> Conversation | None:
        return self.saved[-1] if self.saved else None

    def save(self, conversation: Conversation) -> bool:
        if self.on_save is not None:
            self.on_save()
        self.saved.append(conversation)
        return self.result


class TestScheduling:
    """Debounce behavior."""

    async def test_clean_store_is_not_scheduled(self) -> None:
        store = build_linear_store()
        store.mark_saved(store.conversation.revision)  # type: ignore[union-attr]
        saver = DebouncedSaver(RecordingBackend(), delay=DELAY)
        saver.schedule(store)
        assert not saver.pending

    async def test_rapid_changes_collapse_into_one_save(self) -> None:
        store = build_linear_store(("user", "Hi"), ("assistant", ""))
        backend = RecordingBackend()
        saver = DebouncedSaver(backend, delay=DELAY)
        node_id = store.active_message_id or ""

        for chunk in ["a", "b", "c", "d"]:
            store.update_message_content(node_id, chunk)
            saver.schedule(store)
        assert saver.pending

        await asyncio.sleep(DELAY * 10)
        assert saver.save_count == 1
        assert backend.saved[0].messages[node_id].content == "abcd"
        assert not store.is_dirty

    async def test_subscribed_saver(self) -> None:
        store = build_linear_store()
        backend = RecordingBackend()
        saver = DebouncedSaver(backend, delay=DELAY)
        store.subscribe(saver.schedule)
        store.add_message(Role.USER, "Hi")
        await asyncio.sleep(DELAY * 10)
        assert saver.save_count == 1

    async def test_cancel(self) -> None:
        store = build_linear_store(("user", "Hi"))
        backend = RecordingBackend()
        saver = DebouncedSaver(backend, delay=DELAY)
        saver.schedule(store)
        saver.cancel()
        await asyncio.sleep(DELAY * 5)
        assert backend.saved == []
        assert store.is_dirty

    def test_schedule_without_event_loop_defers_to_flush(self) -> None:
        store = build_linear_store(("user", "Hi"))
        backend = RecordingBackend()
        saver = DebouncedSaver(backend, delay=DELAY)
        saver.schedule(store)
        assert not saver.pending
        assert asyncio.run(saver.flush()) is True
        assert len(backend.saved) == 1


class TestFlush:
    """Immediate saves."""

    async def test_flush_saves_snapshot(self) -> None:
        store = build_linear_store(("user", "Hi"))
        backend = RecordingBackend()
        saver = DebouncedSaver(backend, delay=10)
        saver.schedule(store)

        assert await saver.flush() is True
        assert not saver.pending
        assert backend.saved[0] is not store.conversation
        assert backend.saved[0].id == store.conversation.id  # type: ignore[union-attr]
        assert not store.is_dirty

    async def test_flush_clean_store_is_noop(self) -> None:
        store = build_linear_store()
        store.mark_saved(store.conversation.revision)  # type: ignore[union-attr]
        backend = RecordingBackend()
        saver = DebouncedSaver(backend)
        assert await saver.flush(store) is True
        assert backend.saved == []

    async def test_failed_save_keeps_dirty(self) -> None:
        store = build_linear_store(("user", "Hi"))
        saver = DebouncedSaver(RecordingBackend(result=False))
        assert await saver.flush(store) is False
        assert store.is_dirty
        assert saver.save_count == 0

    async def test_backend_exception_keeps_dirty(self) -> None:
        store = build_linear_store(("user", "Hi"))
        backend = RecordingBackend()

        def explode() -> None:
            raise OSError("disk full")

        backend.on_save = explode
        saver = DebouncedSaver(backend)
        assert await saver.flush(store) is False
        assert store.is_dirty

    async def test_change_during_save_stays_dirty(self) -> None:
        store: TreeStore = build_linear_store(("user", "Hi"))
        backend = RecordingBackend()
        backend.on_save = lambda: store.update_title("Changed mid-save")
        saver = DebouncedSaver(backend)

        assert await saver.flush(store) is True
        assert backend.saved[0].title is None
        assert store.is_dirty
