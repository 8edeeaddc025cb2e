"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Caching of the global config
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from branchchat.config.merge import merge_configs
from branchchat.config.paths import get_config_paths
from branchchat.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    SessionConfig,
    StorageConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("branchchat.config")

_cached_config: Config | None = None


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    BC_LOG sets the log file, BC_MODEL the model and BC_STORAGE_DIR the
    conversation directory. API keys are NOT loaded here; see fetch_secret().
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("BC_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    model = os.environ.get("BC_MODEL")
    if model:
        overrides.setdefault("llm", {})["model"] = model

    storage_dir = os.environ.get("BC_STORAGE_DIR")
    if storage_dir:
        overrides.setdefault("storage", {})["directory"] = storage_dir

    return overrides


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Missing keys fall back to the schema defaults.
    """
    llm_data = _section(data, "llm")
    llm_defaults = LLMConfig()
    llm = LLMConfig(
        model=llm_data.get("model"),
        api_base=llm_data.get("api_base"),
        max_tokens=int(llm_data.get("max_tokens", llm_defaults.max_tokens)),
        temperature=llm_data.get("temperature", llm_defaults.temperature),
        system_prompt=llm_data.get("system_prompt"),
    )

    session_data = _section(data, "session")
    session_defaults = SessionConfig()
    session = SessionConfig(
        save_debounce=float(session_data.get("save_debounce", session_defaults.save_debounce)),
        guest_message_limit=int(
            session_data.get("guest_message_limit", session_defaults.guest_message_limit)
        ),
        context_depth=int(session_data.get("context_depth", session_defaults.context_depth)),
    )

    storage = StorageConfig(directory=_section(data, "storage").get("directory"))

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    known_keys = {"llm", "session", "storage", "logging"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        llm=llm,
        session=session,
        storage=storage,
        logging=logging_config,
        extra=extra,
    )


def load_config(
    project_root: str | Path | None = None,
    *,
    extra_file: str | Path | None = None,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. ``extra_file`` (e.g. ``--config`` on the command line)
    3. Project config (<project_root>/.branchchat/config.yaml)
    4. User config
    5. System config

    Only the plain global config (no project root, no extra file) is cached.
    """
    global _cached_config

    cacheable = project_root is None and extra_file is None
    if _cached_config is not None and cacheable:
        return _cached_config

    paths = get_config_paths(project_root)
    if extra_file is not None:
        paths.append(Path(extra_file))

    configs: list[dict[str, Any]] = []
    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    if cacheable:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it on first use."""
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config so the next call reads the files again."""
    global _cached_config
    _cached_config = None
