"""Data models for persisted conversations.

These models define the structure of conversations and their messages,
independent of the storage backend used. Both are frozen: a conversation is
changed by building a new copy and handing it to the store.
"""

from datetime import datetime, timezone
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from ..config import DEFAULT_CONVERSATION_TITLE, TITLE_PREVIEW_LENGTH


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    """Sender of a message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """A single message within a conversation."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class Conversation(BaseModel):
    """An ordered exchange of messages with one model.

    Messages are append-only; insertion order is display order.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: UUID = Field(default_factory=uuid4)
    title: str | None = Field(default=None, description="Explicit title set by the user")
    messages: list[Message] = Field(default_factory=list)
    model: str | None = Field(default=None, description="Model selected when the conversation was created")
    created_at: datetime = Field(default_factory=_utcnow, alias="createdAt")

    @property
    def display_title(self) -> str:
        """Explicit title, else a preview of the first user message."""
        if self.title:
            return self.title
        for message in self.messages:
            if message.role is MessageRole.USER:
                text = " ".join(message.content.split())
                if len(text) > TITLE_PREVIEW_LENGTH:
                    return text[:TITLE_PREVIEW_LENGTH].rstrip() + "..."
                return text
        return DEFAULT_CONVERSATION_TITLE

    @property
    def last_activity(self) -> datetime:
        return self.messages[-1].timestamp if self.messages else self.created_at

    def with_message(self, message: Message) -> "Conversation":
        """Return a copy with ``message`` appended."""
        return self.model_copy(update={"messages": [*self.messages, message]})

    def with_title(self, title: str | None) -> "Conversation":
        """Return a copy with the explicit title replaced (blank clears it)."""
        cleaned = title.strip() if title else ""
        return self.model_copy(update={"title": cleaned or None})
