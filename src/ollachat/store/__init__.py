"""Conversation store module for ollachat.

Provides durable, key-based persistence of the conversation list.
"""

from .base import ConversationStore
from .codec import decode_conversations, encode_conversations
from .errors import PersistenceCorrupt, StoreError, StoreNotConnected
from .factory import create_conversation_store
from .models import Conversation, Message, MessageRole

__all__ = [
    "ConversationStore",
    "Conversation",
    "Message",
    "MessageRole",
    "PersistenceCorrupt",
    "StoreError",
    "StoreNotConnected",
    "create_conversation_store",
    "decode_conversations",
    "encode_conversations",
]
