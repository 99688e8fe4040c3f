"""Serialization of the conversation list.

Persisted format, most-recent-first:

    [{"id": ..., "title": ..., "messages": [{"id", "role", "content", "timestamp"}],
      "createdAt": ..., "model": ...}, ...]

``title`` and ``model`` are omitted when unset.
"""

import json
from collections.abc import Iterable

from pydantic import TypeAdapter, ValidationError

from .errors import PersistenceCorrupt
from .models import Conversation

_conversation_list = TypeAdapter(list[Conversation])


def encode_conversations(conversations: Iterable[Conversation]) -> str:
    """Serialize conversations to the persisted JSON blob."""
    return json.dumps([
        conversation.model_dump(mode="json", by_alias=True, exclude_none=True)
        for conversation in conversations
    ])


def decode_conversations(blob: str | bytes) -> list[Conversation]:
    """Parse a persisted JSON blob.

    Raises:
        PersistenceCorrupt: If the blob is not valid JSON or does not match the schema
    """
    try:
        return _conversation_list.validate_json(blob)
    except ValidationError as exc:
        raise PersistenceCorrupt(
            f"Saved conversations are unreadable ({exc.error_count()} error(s))"
        ) from exc
