"""Configuration schema dataclasses for BranchChat.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class LLMConfig:
    """LLM provider configuration."""

    model: str | None = None  # litellm model id; None = first provider with a key
    api_base: str | None = None  # Custom endpoint
    max_tokens: int = 2048
    temperature: float | None = 0.7
    system_prompt: str | None = None


@dataclass
class SessionConfig:
    """Chat session behaviour.

    Example config.yaml:
        session:
          save_debounce: 1.5
          guest_message_limit: 1000
          context_depth: 5
    """

    save_debounce: float = 1.5  # Seconds of quiet before a save
    guest_message_limit: int = 1000  # Max messages in a guest conversation
    context_depth: int = 5  # Ancestors sent with a message inside a branch


@dataclass
class StorageConfig:
    """Where conversations are written."""

    directory: str | None = None  # Default: <user data dir>/conversations


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, overrides level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    llm: LLMConfig = field(default_factory=LLMConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
