"""Slash command handlers for the chat REPL."""

from __future__ import annotations

import shlex
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from branchchat.tree.navigation import truncate_label
from branchchat.tree.paths import sort_by_created
from branchchat.tree.types import Role

if TYPE_CHECKING:
    from branchchat.session.chat import ChatSession
    from branchchat.tree.types import MessageNode

ROLE_STYLES = {
    Role.SYSTEM: "dim",
    Role.USER: "bold cyan",
    Role.ASSISTANT: "bold green",
}

COMMANDS = [
    ("/help", "Show this help message"),
    ("/path", "Show the messages in the current view"),
    ("/tree", "Show the whole conversation tree"),
    ("/main", "Show the main thread (no branches)"),
    ("/branch <n> <text>", "Branch off <text> in message <n> and enter the branch"),
    ("/explain <n> <text>", "Branch off <text> in message <n> and explain it"),
    ("/back", "Leave the current branch"),
    ("/crumbs", "Show the branch breadcrumbs"),
    ("/goto <depth>", "Jump to a breadcrumb (0 = main thread)"),
    ("/select <id>", "Make the message with this id (or id prefix) active"),
    ("/edit <n> <text>", "Replace user message <n> and regenerate the reply"),
    ("/title <text>", "Set the conversation title"),
    ("/new", "Start a new conversation"),
    ("/quit", "Save and exit"),
]


def short_id(node_id: str) -> str:
    return node_id[:8]


def render_message(console: Console, number: int | None, node: MessageNode, session: ChatSession) -> None:
    """Print one message with its thinking trace and branch anchors."""
    label = Text()
    if number is not None:
        label.append(f"[{number}] ", style="dim")
    label.append(node.role.value, style=ROLE_STYLES[node.role])
    if node.is_branch_start:
        label.append(f'  ↳ branch on "{truncate_label(node.metadata.selected_text)}"', style="magenta")
    label.append(f"  {short_id(node.id)}", style="dim")
    console.print(label)

    if node.thinking_content:
        console.print(Text(node.thinking_content, style="dim italic"))
    if node.content:
        console.print(node.content, markup=False, highlight=False)
    for image in node.metadata.images:
        console.print(f"[dim]image: {image.name or image.url}[/dim]")

    anchors = session.branches.anchors_for(node.id)
    if anchors:
        names = ", ".join(f'"{truncate_label(ref.selected_text, 30)}"' for ref in anchors)
        console.print(f"[magenta]branches: {names}[/magenta]")
    console.print()


class CommandHandler:
    """Handles slash commands for one ChatSession."""

    def __init__(self, session: ChatSession, console: Console | None = None) -> None:
        self.session = session
        self.console = console or Console()
        self.quit_requested = False

    async def handle(self, line: str) -> None:
        """Handle a slash command."""
        try:
            parts = shlex.split(line)
        except ValueError as e:
            self.console.print(f"[red]Cannot parse command: {e}[/red]")
            return
        if not parts:
            return

        cmd = parts[0].lower()
        args = parts[1:]

        handlers: dict[str, Callable[[list[str]], Awaitable[None]]] = {
            "/help": self._cmd_help,
            "/path": self._cmd_path,
            "/tree": self._cmd_tree,
            "/main": self._cmd_main,
            "/branch": self._cmd_branch,
            "/explain": self._cmd_explain,
            "/back": self._cmd_back,
            "/crumbs": self._cmd_crumbs,
            "/goto": self._cmd_goto,
            "/select": self._cmd_select,
            "/edit": self._cmd_edit,
            "/title": self._cmd_title,
            "/new": self._cmd_new,
            "/quit": self._cmd_quit,
        }

        handler = handlers.get(cmd)
        if handler:
            await handler(args)
        else:
            self.console.print(f"[red]Unknown command: {cmd}[/red]")
            self.console.print("Type [bold]/help[/bold] for available commands.")

    def show_view(self) -> None:
        """Print the messages of the current view, numbered for /branch and /edit."""
        crumbs = self.session.breadcrumbs()
        if len(crumbs) > 1:
            self.console.print(f"[bold magenta]{' › '.join(crumbs)}[/bold magenta]")
        elif self.session.showing_main_thread:
            self.console.print("[bold magenta]Main thread[/bold magenta]")

        shown = 0
        for number, node in enumerate(self.session.displayed_messages(), start=1):
            if node.role is Role.SYSTEM and not node.content:
                continue
            render_message(self.console, number, node, self.session)
            shown += 1
        if not shown:
            self.console.print("[dim]No messages yet[/dim]")

    def show_error(self) -> None:
        error = self.session.last_error
        if error is not None:
            self.console.print(f"[red]{error.type.value}: {error.message}[/red]")
            self.session.dismiss_error()

    def _message_at(self, arg: str) -> MessageNode | None:
        try:
            number = int(arg)
        except ValueError:
            self.console.print(f"[red]Not a message number: {arg}[/red]")
            return None
        messages = self.session.displayed_messages()
        if not 1 <= number <= len(messages):
            self.console.print(f"[red]No message {number} in this view[/red]")
            return None
        return messages[number - 1]

    async def _cmd_help(self, args: list[str]) -> None:
        """Show available commands."""
        table = Table(title="Available Commands")
        table.add_column("Command", style="bold")
        table.add_column("Description")
        for cmd, desc in COMMANDS:
            table.add_row(cmd, desc)
        self.console.print(table)

    async def _cmd_path(self, args: list[str]) -> None:
        self.show_view()

    async def _cmd_tree(self, args: list[str]) -> None:
        """Render every node, children oldest first."""
        store = self.session.store
        conversation = store.conversation
        if conversation is None:
            self.console.print("[dim]No conversation[/dim]")
            return

        def label(node: MessageNode) -> Text:
            text = Text()
            marker = "● " if node.id == store.active_message_id else ""
            text.append(marker, style="yellow")
            text.append(f"{short_id(node.id)} ", style="dim")
            text.append(node.role.value, style=ROLE_STYLES[node.role])
            if node.is_branch_start:
                text.append(f' [branch "{truncate_label(node.metadata.selected_text, 30)}"]', style="magenta")
            preview = truncate_label(node.content.replace("\n", " "), 50)
            if preview:
                text.append(f" {preview}")
            return text

        root = conversation.root
        tree = Tree(label(root))
        stack = [(root, tree)]
        while stack:
            node, branch = stack.pop()
            for child in sort_by_created(store.children_of(node.id)):
                stack.append((child, branch.add(label(child))))
        self.console.print(tree)

    async def _cmd_main(self, args: list[str]) -> None:
        self.session.show_main_thread()
        self.show_view()

    async def _create_branch(self, args: list[str], auto_explain: bool) -> None:
        if len(args) < 2:
            self.console.print("[red]Usage: /branch <n> <text>[/red]")
            return
        node = self._message_at(args[0])
        if node is None:
            return
        selected = " ".join(args[1:])
        start = node.content.find(selected)
        if start < 0:
            self.console.print(f"[red]Text not found in message {args[0]}[/red]")
            return

        with self.console.status("Explaining..." if auto_explain else "Branching..."):
            result = await self.session.create_branch(
                node.id,
                selected,
                start,
                start + len(selected),
                auto_explain=auto_explain,
            )
        if result is None:
            self.console.print("[red]Could not create branch[/red]")
            return
        self.show_error()
        self.show_view()

    async def _cmd_branch(self, args: list[str]) -> None:
        await self._create_branch(args, auto_explain=False)

    async def _cmd_explain(self, args: list[str]) -> None:
        await self._create_branch(args, auto_explain=True)

    async def _cmd_back(self, args: list[str]) -> None:
        if self.session.go_back() is None:
            self.console.print("[dim]Already on the main thread[/dim]")
            return
        self.show_view()

    async def _cmd_crumbs(self, args: list[str]) -> None:
        for depth, crumb in enumerate(self.session.breadcrumbs()):
            self.console.print(f"  {depth}: {crumb}")

    async def _cmd_goto(self, args: list[str]) -> None:
        if not args or not args[0].isdigit():
            self.console.print("[red]Usage: /goto <depth>[/red]")
            return
        if self.session.navigate_to(int(args[0])) is None:
            self.console.print(f"[red]No breadcrumb at depth {args[0]}[/red]")
            return
        self.show_view()

    async def _cmd_select(self, args: list[str]) -> None:
        if not args:
            self.console.print("[red]Usage: /select <id>[/red]")
            return
        matches = [mid for mid in self.session.store.messages if mid.startswith(args[0])]
        if len(matches) != 1:
            self.console.print(f"[red]{'No' if not matches else 'Ambiguous'} message id: {args[0]}[/red]")
            return
        self.session.select_message(matches[0])
        self.show_view()

    async def _cmd_edit(self, args: list[str]) -> None:
        if len(args) < 2:
            self.console.print("[red]Usage: /edit <n> <text>[/red]")
            return
        node = self._message_at(args[0])
        if node is None:
            return
        if node.role is not Role.USER:
            self.console.print("[red]Only your own messages can be edited[/red]")
            return
        if not self.session.start_edit(node.id):
            self.console.print("[red]Cannot edit that message right now[/red]")
            return
        with self.console.status("Regenerating..."):
            saved = await self.session.save_edit(node.id, " ".join(args[1:]))
        if not saved:
            self.session.cancel_edit()
            self.console.print("[red]Edit was not saved[/red]")
            return
        self.show_error()
        self.show_view()

    async def _cmd_title(self, args: list[str]) -> None:
        if not args:
            conversation = self.session.store.conversation
            title = conversation.title if conversation else None
            self.console.print(f"Title: {title or 'New Chat'}")
            return
        self.session.update_title(" ".join(args))
        self.console.print(f"Title set to: {' '.join(args)}")

    async def _cmd_new(self, args: list[str]) -> None:
        await self.session.new_conversation()
        self.console.print("[green]Started a new conversation[/green]")

    async def _cmd_quit(self, args: list[str]) -> None:
        self.quit_requested = True
