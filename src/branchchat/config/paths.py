"""Platform-aware configuration and data path resolution.

Handles file locations for:
- Windows: %PROGRAMDATA% (system), %APPDATA% (user)
- Unix: /etc/ (system), $XDG_CONFIG_HOME, ~/.config/branchchat/ or ~/.branchchat/ (user)
- Project: ./.branchchat/
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

CONFIG_FILENAME = "config.yaml"
APP_NAME = "branchchat"
SHORT_NAME = ".branchchat"


def get_system_config_path() -> Path | None:
    """Get system-level config path (the file may not exist)."""
    if sys.platform == "win32":
        program_data = os.environ.get("PROGRAMDATA")
        if program_data:
            return Path(program_data) / APP_NAME / CONFIG_FILENAME
        return None
    return Path("/etc") / APP_NAME / CONFIG_FILENAME


def get_user_config_dir() -> Path | None:
    if sys.platform == "win32":
        app_data = os.environ.get("APPDATA")
        return Path(app_data) / APP_NAME if app_data else None

    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config) / APP_NAME

    home = Path.home()
    if (home / ".config").exists():
        return home / ".config" / APP_NAME
    return home / SHORT_NAME


def get_user_config_path() -> Path | None:
    """Get user-level config path (the file may not exist)."""
    user_dir = get_user_config_dir()
    return user_dir / CONFIG_FILENAME if user_dir else None


def get_project_config_path(project_root: str | Path) -> Path:
    return Path(project_root) / SHORT_NAME / CONFIG_FILENAME


def get_config_paths(project_root: str | Path | None = None) -> list[Path]:
    """Get all config paths in priority order (lowest to highest).

    Args:
        project_root: Optional directory for project-level config.

    Returns:
        List of config paths in order: system, user, project.
        Later paths override earlier ones when merging.
    """
    paths: list[Path] = []

    system_path = get_system_config_path()
    if system_path:
        paths.append(system_path)

    user_path = get_user_config_path()
    if user_path:
        paths.append(user_path)

    if project_root is not None:
        paths.append(get_project_config_path(project_root))

    return paths


def get_default_storage_dir() -> Path:
    """Directory for saved conversations when none is configured."""
    user_dir = get_user_config_dir()
    return (user_dir or Path.cwd() / SHORT_NAME) / "conversations"
