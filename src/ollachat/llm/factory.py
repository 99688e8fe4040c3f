from typing import Any

from .base import InferenceClient
from .providers import OllamaClient


def create_inference_client(provider: str = "ollama", **config: Any) -> InferenceClient:
    """Create an inference client instance.

    This factory function hides the instantiation logic for different servers.

    Args:
        provider: Server type ('ollama')
        **config: Client-specific configuration
            For Ollama:
                - host: str (default: 'http://localhost:11434')
                - model: str | None (default model for generation)
                - connect_timeout: float (default: 10.0)
                - transport: httpx.AsyncBaseTransport | None

    Returns:
        Initialized inference client

    Raises:
        ValueError: If provider type is not supported

    Examples:
        >>> client = create_inference_client(
        ...     "ollama",
        ...     host="http://localhost:11434",
        ...     model="llama3.2"
        ... )
    """
    provider_lower = provider.lower()

    if provider_lower == "ollama":
        return OllamaClient(**config)

    raise ValueError(
        f"Unsupported provider: {provider}. "
        f"Supported providers: 'ollama'"
    )
