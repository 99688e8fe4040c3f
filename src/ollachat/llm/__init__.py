from .base import InferenceClient
from .errors import (
    BadResponse,
    EmptyGeneration,
    InferenceError,
    ServerError,
    ServerUnreachable,
    TransportError,
)
from .factory import create_inference_client
from .models import ChatMessage, GenerationStream
from .prompting import build_prompt, format_history, strip_role_echo
from .providers import OllamaClient

__all__ = [
    "InferenceClient",
    "create_inference_client",
    "ChatMessage",
    "GenerationStream",
    "OllamaClient",
    "InferenceError",
    "TransportError",
    "ServerUnreachable",
    "BadResponse",
    "ServerError",
    "EmptyGeneration",
    "build_prompt",
    "format_history",
    "strip_role_echo",
]
