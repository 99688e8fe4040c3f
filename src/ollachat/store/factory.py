"""Factory for creating conversation store backends."""

from typing import Any

from .base import ConversationStore


def create_conversation_store(
    backend: str = "sqlite",
    **kwargs: Any
) -> ConversationStore:
    """Create a conversation store backend.

    Args:
        backend: Backend type ("memory", "json" or "sqlite")
        **kwargs: Backend-specific configuration
            For memory:
                - key: str
            For json:
                - directory: str | Path (default: '~/.ollachat')
                - key: str
            For sqlite:
                - path: str | Path (default: '~/.ollachat/conversations.db')
                - key: str

    Returns:
        ConversationStore instance

    Raises:
        ValueError: If backend type is not supported
    """
    if backend == "memory":
        from .in_memory import InMemoryConversationStore
        return InMemoryConversationStore(**kwargs)

    elif backend == "json":
        from .json_file import JSONFileConversationStore
        return JSONFileConversationStore(**kwargs)

    elif backend == "sqlite":
        from .sqlite import SQLiteConversationStore
        return SQLiteConversationStore(**kwargs)

    raise ValueError(
        f"Unsupported store backend: {backend}. "
        f"Supported backends: memory, json, sqlite"
    )
