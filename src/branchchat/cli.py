"""Command-line interface for branchchat."""

from __future__ import annotations

import argparse
import asyncio
import sys
from collections.abc import Sequence
from pathlib import Path

from branchchat import __version__
from branchchat.config import get_default_storage_dir, load_config
from branchchat.config.paths import get_user_config_dir
from branchchat.config.schema import Config
from branchchat.core.llm import LiteLLMProvider, get_default_model
from branchchat.logging import get_logger, setup_logging
from branchchat.session import ChatSession, FileConversationStore, FileKeyValueStore, GuestCache

log = get_logger("cli")


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="branchchat",
        description="Branching LLM chat: explore any highlighted phrase in its own thread",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=None,
        help="Increase verbosity (can be repeated, up to -vvvv)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Extra config file, applied after the system/user/project files",
    )
    parser.add_argument(
        "--model",
        help="litellm model id (default: from config, then the first provider with an API key)",
    )
    parser.add_argument(
        "--user",
        help="Save conversations for this user; omit for a guest session",
    )
    parser.add_argument(
        "--storage-dir",
        type=Path,
        help="Directory for saved conversations",
    )
    return parser


def build_session(config: Config, user: str | None, storage_dir: Path) -> ChatSession:
    """Wire provider, persistence and config into a ChatSession."""
    model = get_default_model(config.llm.model)
    provider = LiteLLMProvider(
        model,
        api_base=config.llm.api_base,
        temperature=config.llm.temperature,
        system_prompt=config.llm.system_prompt,
    )
    if user:
        return ChatSession(
            provider,
            user_id=user,
            backend=FileConversationStore(storage_dir),
            config=config,
        )
    guest_cache = GuestCache(FileKeyValueStore(storage_dir / "guest.yaml"))
    return ChatSession(provider, guest_cache=guest_cache, config=config)


async def run_chat(config: Config, user: str | None, storage_dir: Path) -> int:
    from branchchat.repl import ChatRepl

    session = build_session(config, user, storage_dir)
    await session.load()

    history_dir = get_user_config_dir()
    history_file = history_dir / "history" if history_dir and history_dir.exists() else None
    repl = ChatRepl(session, history_file=history_file)
    try:
        await repl.run()
    finally:
        await session.close()
    return 0


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    config = load_config(Path.cwd(), extra_file=parsed.config)
    if parsed.model:
        config.llm.model = parsed.model
    if parsed.storage_dir:
        config.storage.directory = str(parsed.storage_dir)
    if parsed.verbose is not None:
        config.logging.verbose = min(parsed.verbose, 4)

    setup_logging(config.logging)

    if config.storage.directory:
        storage_dir = Path(config.storage.directory).expanduser()
    else:
        storage_dir = get_default_storage_dir()
    log.debug("Using storage directory %s", storage_dir)

    try:
        return asyncio.run(run_chat(config, parsed.user, storage_dir))
    except KeyboardInterrupt:
        return 130


def main() -> int:
    """Console script entry point."""
    return run_cli(sys.argv[1:])
