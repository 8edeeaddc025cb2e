"""Root pytest configuration for all tests."""

from __future__ import annotations

import pytest

from branchchat.config import clear_secret_cache, reset_config
from branchchat.tree.store import TreeStore
from tests.utils import create_store

pytest_plugins = ("pytest_asyncio",)


@pytest.fixture
def store() -> TreeStore:
    """Empty TreeStore with deterministic ids and clock."""
    return create_store()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep BC_* variables and cached config/secrets from leaking between tests."""
    for var in ("BC_LOG", "BC_MODEL", "BC_STORAGE_DIR"):
        monkeypatch.delenv(var, raising=False)
    reset_config()
    clear_secret_cache()
