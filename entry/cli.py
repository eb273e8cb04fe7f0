"""
CLI Entry Adapter.

Responsibility:
- Render engine callbacks (messages, node status) on the terminal
- Normalize raw terminal input into answers or control commands
- NO node logic, NO scheduling
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel

from execution.callbacks import EngineCallbacks
from shared.models import ChatMessage, ExecutionContext
from shared.workflow_contracts import NodeStatus

ControlCommand = Literal["pause", "resume", "stop", "quit"]

_COMMANDS: dict[str, ControlCommand] = {
    "/pause": "pause",
    "/resume": "resume",
    "/stop": "stop",
    "/quit": "quit",
    "exit": "quit",
    "quit": "quit",
}

_STATUS_STYLES: dict[str, str] = {
    "running": "yellow",
    "completed": "green",
    "waiting": "cyan",
    "error": "bold red",
    "idle": "dim",
}


@dataclass(frozen=True)
class ConsoleInput:
    text: str
    command: ControlCommand | None = None


class CLIAdapter:
    """Command-line entry adapter for a workflow run."""

    def __init__(self, console: Console | None = None, show_status: bool = True):
        self.console = console or Console()
        self.show_status = show_status
        self.last_context: ExecutionContext | None = None

    def read_input(self, raw_input: str) -> ConsoleInput:
        """Normalize raw CLI input to an answer or a control command."""
        text = raw_input.strip()
        return ConsoleInput(text=text, command=_COMMANDS.get(text.lower()))

    def callbacks(self) -> EngineCallbacks:
        return EngineCallbacks(
            on_node_status_change=self.render_status,
            on_context_update=self.remember_context,
            on_message=self.render_message,
            on_wait_for_user=self.render_prompt,
        )

    def render_message(self, message: ChatMessage) -> None:
        if message.role == "system":
            self.console.print(f"[bold magenta]⚙ {message.content}[/]")
            return
        if message.metadata.get("awaiting_input"):
            # The question itself is shown by render_prompt.
            return
        self.console.print(Markdown(message.content))

    def render_status(self, node_id: str, status: NodeStatus) -> None:
        if not self.show_status:
            return
        style = _STATUS_STYLES.get(status, "white")
        self.console.print(f"[dim]  {node_id}[/dim] → [{style}]{status}[/]")

    def render_prompt(self, node_id: str, prompt: str) -> None:
        self.console.print(Panel(prompt, title=f"❓ {node_id}", border_style="cyan"))

    def remember_context(self, context: ExecutionContext) -> None:
        self.last_context = context
