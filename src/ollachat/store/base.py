"""Abstract base class for conversation store backends.

This module defines the interface for conversation persistence.
The abstraction hides:
- Storage medium (file, SQLite, in-memory)
- Connection management
- How the serialized list is kept under its key

Backends only move one serialized blob in and out; the list semantics
(most-recent-first insertion, in-place replacement, removal) live here so
every backend behaves identically.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from uuid import UUID

from ..config import DEFAULT_STORE_KEY
from .codec import decode_conversations, encode_conversations
from .errors import PersistenceCorrupt
from .models import Conversation

logger = logging.getLogger(__name__)


class ConversationStore(ABC):
    """Abstract conversation store.

    Owns the durable, ordered list of conversations and is the only writer of
    persisted state. Reads return copies; every mutation is written through
    before the call returns.
    """

    def __init__(self, key: str = DEFAULT_STORE_KEY):
        self._key = key
        self._conversations: list[Conversation] = []
        self._write_lock = asyncio.Lock()

    @property
    def key(self) -> str:
        return self._key

    @abstractmethod
    async def connect(self) -> None:
        """Initialize the store backend."""

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the store backend gracefully."""

    @abstractmethod
    async def _read_blob(self) -> str | None:
        """Return the persisted blob for ``key``, or None when nothing is saved.

        May raise ``PersistenceCorrupt`` when the medium itself is unreadable.
        """

    @abstractmethod
    async def _write_blob(self, blob: str) -> None:
        """Persist ``blob`` under ``key``."""

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Get the backend type identifier."""

    async def load(self) -> list[Conversation]:
        """Load the persisted conversation list.

        Missing or unreadable state is treated as "no history": the problem
        is logged and an empty list returned.
        """
        try:
            blob = await self._read_blob()
            conversations = decode_conversations(blob) if blob is not None else []
        except PersistenceCorrupt as exc:
            logger.warning("Discarding saved conversations in %s store: %s", self.backend_type, exc)
            conversations = []

        self._conversations = conversations
        logger.debug("Loaded %d conversation(s) from %s store", len(conversations), self.backend_type)
        return self.list()

    def list(self) -> list[Conversation]:
        """Get all conversations, most recent first."""
        return [conversation.model_copy(deep=True) for conversation in self._conversations]

    def get(self, conversation_id: UUID) -> Conversation | None:
        """Get a conversation by id."""
        index = self._index_of(conversation_id)
        if index is None:
            return None
        return self._conversations[index].model_copy(deep=True)

    async def upsert(self, conversation: Conversation) -> None:
        """Replace a conversation in place, or insert it as the most recent.

        Args:
            conversation: The conversation to save

        Raises:
            Whatever the backend raises when the write fails; the cached list
            is left unchanged in that case.
        """
        stored = conversation.model_copy(deep=True)
        async with self._write_lock:
            conversations = list(self._conversations)
            index = self._index_of(conversation.id)
            if index is None:
                conversations.insert(0, stored)
            else:
                conversations[index] = stored
            await self._replace(conversations)

    async def remove(self, conversation_id: UUID) -> bool:
        """Delete a conversation by id.

        Returns:
            True if a conversation was removed
        """
        async with self._write_lock:
            index = self._index_of(conversation_id)
            if index is None:
                return False
            conversations = list(self._conversations)
            del conversations[index]
            await self._replace(conversations)
        return True

    def _index_of(self, conversation_id: UUID) -> int | None:
        for index, conversation in enumerate(self._conversations):
            if conversation.id == conversation_id:
                return index
        return None

    async def _replace(self, conversations: list[Conversation]) -> None:
        # Caller holds the write lock; the cache changes only after a successful write
        await self._write_blob(encode_conversations(conversations))
        self._conversations = conversations

    def __len__(self) -> int:
        return len(self._conversations)
