"""Conversation state machine for ollachat.

Module structure (each module hides a design decision):
- models.py: Turn lifecycle and the state snapshot handed to presentation
- thinking.py: Splitting assistant text into reasoning and answer
- callbacks.py: How presentation layers observe the session
- session.py: Turn serialization and reconciliation into conversations
"""

from .callbacks import SessionCallback
from .models import SessionState, Turn, TurnPhase
from .session import ChatSession
from .thinking import ThinkingSplit, extract_thinking

__all__ = [
    "ChatSession",
    "SessionCallback",
    "SessionState",
    "ThinkingSplit",
    "Turn",
    "TurnPhase",
    "extract_thinking",
]
