"""Interactive chat REPL."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from prompt_toolkit import PromptSession
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory
from prompt_toolkit.history import FileHistory
from rich.console import Console

from branchchat import __version__
from branchchat.commands import CommandHandler, render_message

if TYPE_CHECKING:
    from pathlib import Path

    from branchchat.session.chat import ChatSession


class ChatRepl:
    """Reads messages and slash commands and drives a ChatSession."""

    def __init__(
        self,
        session: ChatSession,
        history_file: Path | None = None,
        console: Console | None = None,
    ) -> None:
        self.session = session
        self.console = console or Console()
        self.commands = CommandHandler(session, self.console)
        self._running = False

        history = FileHistory(str(history_file)) if history_file else None
        self.prompt: PromptSession[str] = PromptSession(
            history=history,
            auto_suggest=AutoSuggestFromHistory(),
        )

    def _prompt_text(self) -> str:
        depth = self.session.navigation.depth
        return f"branch {depth}> " if depth else "you> "

    async def run(self) -> None:
        """Run the REPL until /quit or end of input."""
        self._running = True

        self.console.print(f"[bold]BranchChat[/bold] v{__version__} - {self.session.provider.model}")
        self.console.print("Type [bold]/help[/bold] for commands, [bold]/quit[/bold] to exit.\n")
        self.commands.show_view()

        while self._running:
            try:
                prompt_text = self._prompt_text()
                line = await asyncio.get_running_loop().run_in_executor(
                    None,
                    lambda: self.prompt.prompt(prompt_text),
                )

                line = line.strip()
                if not line:
                    continue

                if line.startswith("/"):
                    await self.commands.handle(line)
                    if self.commands.quit_requested:
                        break
                else:
                    await self.send(line)

            except KeyboardInterrupt:
                continue
            except EOFError:
                break

        self._running = False

    async def send(self, text: str) -> None:
        """Send a message and print the reply."""
        with self.console.status("Thinking..."):
            outcome = await self.session.send_message(text)

        if outcome is not None and outcome.node_id:
            node = self.session.store.node(outcome.node_id)
            if node is not None:
                if outcome.thinking_seconds is not None:
                    self.console.print(f"[dim]Thought for {outcome.thinking_seconds}s[/dim]")
                render_message(self.console, None, node, self.session)
        self.commands.show_error()

        warning = self.session.guest_limit_warning
        if warning:
            self.console.print(f"[yellow]{warning}[/yellow]")

    def stop(self) -> None:
        self._running = False
