"""Configuration management for BranchChat.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/branchchat/ or %PROGRAMDATA%)
- User-level config (~/.config/branchchat/, ~/.branchchat/ or %APPDATA%)
- Project-level config (./.branchchat/)
- Environment variable overrides (highest priority)

Example usage:
    from branchchat.config import load_config, get_config

    config = load_config(project_root=".")
    print(config.llm.model)
    print(config.session.save_debounce)
"""

from branchchat.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from branchchat.config.paths import (
    get_config_paths,
    get_default_storage_dir,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from branchchat.config.schema import (
    Config,
    LLMConfig,
    LoggingConfig,
    SessionConfig,
    StorageConfig,
)
from branchchat.config.secrets import (
    clear_secret_cache,
    fetch_secret,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "LLMConfig",
    "SessionConfig",
    "StorageConfig",
    "LoggingConfig",
    # Secret management
    "fetch_secret",
    "clear_secret_cache",
    # Path utilities
    "get_config_paths",
    "get_default_storage_dir",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
