"""API key lookup with dotenv support.

Keys come from the process environment first, then from a ``.env.secrets``
file in the working directory or the user config directory. File contents
are read once and cached.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import dotenv_values

from branchchat.config.paths import get_user_config_dir

SECRETS_FILE = ".env.secrets"


def _candidate_files() -> list[Path]:
    candidates = [Path(SECRETS_FILE)]
    user_dir = get_user_config_dir()
    if user_dir:
        candidates.append(user_dir / SECRETS_FILE)
    return candidates


@lru_cache(maxsize=4)
def _load_secrets(secrets_path: Path | None = None) -> dict[str, str | None]:
    """Merged contents of the secrets files; the working directory wins."""
    if secrets_path is not None:
        return dotenv_values(secrets_path) if secrets_path.exists() else {}

    merged: dict[str, str | None] = {}
    for path in reversed(_candidate_files()):
        if path.exists():
            merged.update(dotenv_values(path))
    return merged


def fetch_secret(
    key: str,
    default: str | None = None,
    secrets_path: Path | None = None,
) -> str | None:
    """Fetch a secret from the environment or a ``.env.secrets`` file.

    Environment variables win so tests can clear a key with
    ``monkeypatch.delenv()``.

    Args:
        key: Environment variable name (e.g., "OPENROUTER_API_KEY")
        default: Value returned when the key is not set anywhere
        secrets_path: Read only this file instead of the default locations

    Returns:
        Secret value or default if not found.
    """
    value = os.environ.get(key)
    if value is not None:
        return value

    value = _load_secrets(secrets_path).get(key)
    return value if value is not None else default


def clear_secret_cache() -> None:
    """Forget cached file contents (after editing .env.secrets, or in tests)."""
    _load_secrets.cache_clear()
