"""Console rendering of a ChatSession.

Prints streamed fragments as they arrive. Text inside a ``<think>`` segment
is dimmed so the reasoning trace stands apart from the answer.
"""

from uuid import UUID

from rich.console import Console
from rich.markup import escape

from ..chat import SessionCallback
from ..config import THINK_END, THINK_START
from ..store import Message


class ConsoleCallback(SessionCallback):
    """Writes the active conversation's stream to a Rich console."""

    def __init__(self, console: Console, conversation_id: UUID | None = None) -> None:
        self.console = console
        self.conversation_id = conversation_id
        self._started = False

    def follow(self, conversation_id: UUID | None) -> None:
        """Only render updates for ``conversation_id`` from now on."""
        self.conversation_id = conversation_id
        self._started = False

    def _is_followed(self, conversation_id: UUID | None) -> bool:
        return self.conversation_id is None or conversation_id == self.conversation_id

    def on_stream_fragment(self, conversation_id: UUID, fragment: str, content: str) -> None:
        if not self._is_followed(conversation_id):
            return
        if not self._started:
            self.console.print("[bold magenta]assistant[/]")
            self._started = True
        thinking = THINK_START in content and THINK_END not in content
        self.console.print(
            fragment,
            end="",
            style="dim" if thinking else None,
            markup=False,
            highlight=False,
        )

    def on_message_committed(self, conversation_id: UUID, message: Message) -> None:
        if not self._is_followed(conversation_id):
            return
        self.console.print()
        self._started = False

    def on_error(self, conversation_id: UUID | None, message: str) -> None:
        if conversation_id is not None and not self._is_followed(conversation_id):
            return
        if self._started:
            self.console.print()
            self._started = False
        self.console.print(f"[bold red]Error:[/] {escape(message)}", highlight=False)
