"""In-memory conversation store backend.

Keeps the serialized blob in a variable. Data is lost when the application
exits. Suitable for single-session use or testing.
"""

from ..config import DEFAULT_STORE_KEY
from .base import ConversationStore


class InMemoryConversationStore(ConversationStore):
    """In-memory conversation store (session-only)."""

    def __init__(self, key: str = DEFAULT_STORE_KEY, initial_blob: str | None = None):
        super().__init__(key)
        self._blobs: dict[str, str] = {}
        if initial_blob is not None:
            self._blobs[key] = initial_blob

    async def connect(self) -> None:
        """Initialize memory (no-op for in-memory)."""
        pass

    async def disconnect(self) -> None:
        """Close memory (no-op for in-memory)."""
        pass

    async def _read_blob(self) -> str | None:
        return self._blobs.get(self._key)

    async def _write_blob(self, blob: str) -> None:
        self._blobs[self._key] = blob

    @property
    def blob(self) -> str | None:
        """The last persisted blob."""
        return self._blobs.get(self._key)

    @property
    def backend_type(self) -> str:
        return "memory"
