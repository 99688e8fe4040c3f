"""Callback interface for observing a ChatSession.

Hides the details of how presentation layers receive updates. Subclass
``SessionCallback`` and override the hooks you need; every hook is a no-op
by default. Hooks run on the session's event loop, in the order the changes
happen.
"""

from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from ..store.models import Message
    from .session import ChatSession


class SessionCallback:
    """Observer of session state changes."""

    def on_state_changed(self, session: "ChatSession") -> None:
        """Selection, conversation list, model or loading flags changed."""

    def on_stream_fragment(self, conversation_id: UUID, fragment: str, content: str) -> None:
        """A fragment arrived for ``conversation_id``; ``content`` is the text so far."""

    def on_message_committed(self, conversation_id: UUID, message: "Message") -> None:
        """An assistant message was committed to ``conversation_id``."""

    def on_error(self, conversation_id: UUID | None, message: str) -> None:
        """A user-facing error was raised (``conversation_id`` is None for catalog errors)."""
