"""Data models for the chat session.

Hides the representation of in-flight turns and of the state snapshot handed
to presentation layers.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from ..store.models import Conversation


class TurnPhase(str, Enum):
    """Lifecycle of one request/response cycle."""

    PENDING = "pending"  # request issued, no fragment yet
    STREAMING = "streaming"
    SETTLED = "settled"
    FAILED = "failed"


@dataclass
class Turn:
    """Ephemeral state of one turn. Never persisted."""

    conversation_id: UUID
    prompt: str
    model: str
    phase: TurnPhase = TurnPhase.PENDING
    content: str = ""
    fragments: int = 0
    error: str | None = None
    task: "asyncio.Task[None] | None" = field(default=None, repr=False)

    def append(self, fragment: str) -> None:
        self.content += fragment
        self.fragments += 1

    @property
    def in_flight(self) -> bool:
        return self.phase in (TurnPhase.PENDING, TurnPhase.STREAMING)


class SessionState(BaseModel):
    """Immutable snapshot of everything a presentation layer renders."""

    model_config = ConfigDict(frozen=True)

    conversations: tuple[Conversation, ...]
    selected_conversation_id: UUID | None
    input_message: str
    is_loading: bool
    is_streaming: bool
    current_stream_content: str
    error_message: str | None
    selected_model: str
    available_models: tuple[str, ...]
    in_flight: tuple[UUID, ...]
