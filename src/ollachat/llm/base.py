from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from .errors import InferenceError
from .models import ChatMessage, GenerationStream


class InferenceClient(ABC):
    """Abstract base class for inference server clients.

    This module hides the design decision of which inference server is used.
    Implementations must handle server-specific details like:
    - HTTP client setup
    - Prompt assembly and request format
    - Incremental parsing of the streamed response
    - Translating transport and protocol failures into ``InferenceError``

    Supports async context manager protocol for proper resource cleanup:
        async with client:
            models = await client.list_models()
        # Automatically cleaned up
    """

    @abstractmethod
    async def list_models(self) -> list[str]:
        """List the model names available on the server.

        Returns:
            Model names in the order the server reports them

        Raises:
            ServerUnreachable: If the server cannot be reached
            ServerError: If the server answers with a non-2xx status
            BadResponse: If the catalog payload does not parse
        """

    @abstractmethod
    async def stream_generate(
        self,
        prompt: str,
        prior_messages: Sequence[ChatMessage],
        model: str,
        **kwargs: Any
    ) -> GenerationStream:
        """Start a streaming generation for one conversation turn.

        Args:
            prompt: The new user prompt
            prior_messages: Conversation history preceding the prompt
            model: Model to generate with
            **kwargs: Server-specific request options

        Returns:
            GenerationStream yielding text fragments in order. Failures
            (``ServerError``, ``EmptyGeneration``, ``TransportError``) are
            raised from the iteration, not from this call.
        """

    @abstractmethod
    async def pull_model(self, name: str) -> str:
        """Ask the server to download a model.

        Args:
            name: Model name, e.g. ``"llama3.2:3b"``

        Returns:
            Final status reported by the server

        Raises:
            ServerError: If the server answers with a non-2xx status
        """

    async def health_check(self) -> bool:
        """Return True when the server answers the catalog endpoint."""
        try:
            await self.list_models()
        except InferenceError:
            return False
        return True

    @abstractmethod
    async def close(self) -> None:
        """Close any open connections or resources."""

    async def __aenter__(self) -> "InferenceClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Async context manager exit with automatic cleanup.

        Note: Suppresses "Event loop is closed" errors during cleanup.
        This is a known harmless race condition in httpx/anyio cleanup:
        https://github.com/encode/httpx/issues/914
        """
        try:
            await self.close()
        except RuntimeError as e:
            # Suppress harmless cleanup errors from httpx/anyio
            if "Event loop is closed" not in str(e):
                raise
