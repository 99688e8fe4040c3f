"""
Ollachat: a chat client core for a local Ollama server.

Streams generations from the server, reconciles them into conversations and
keeps the conversation history on disk. Presentation layers observe a
``ChatSession`` and forward user intents to it.
"""

__version__ = "0.1.0"

from .chat import ChatSession, SessionCallback, extract_thinking
from .llm import InferenceClient, OllamaClient, create_inference_client
from .store import Conversation, ConversationStore, Message, MessageRole, create_conversation_store

__all__ = [
    "ChatSession",
    "Conversation",
    "ConversationStore",
    "InferenceClient",
    "Message",
    "MessageRole",
    "OllamaClient",
    "SessionCallback",
    "create_conversation_store",
    "create_inference_client",
    "extract_thinking",
]
