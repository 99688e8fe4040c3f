from collections.abc import AsyncIterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class GenerationStream:
    """Wrapper for streaming generation responses that captures usage info.

    Acts as an async iterator for text fragments while storing the timing and
    token statistics that arrive on the final ``done`` line.

    Usage:
        stream = await client.stream_generate(prompt, history, model)
        async for fragment in stream:
            print(fragment, end="")
        # After iteration, usage is available
        print(stream.usage)  # {"prompt_eval_count": 26, "eval_count": 290, ...}

    The stream is finite and not restartable. Call ``aclose()`` to abandon it
    early; the underlying HTTP response is released immediately.
    """

    def __init__(self, model: str, async_iter: AsyncIterator[str] | None = None):
        """Initialize with the model name and, optionally, the fragment iterator.

        Args:
            model: Model the request was issued against
            async_iter: Async iterator yielding text fragments
        """
        self.model = model
        self._iter = async_iter
        self._usage: dict[str, Any] | None = None
        self._closed = False

    def attach(self, async_iter: AsyncIterator[str]) -> None:
        """Attach the fragment iterator (used when it needs a reference to this stream)."""
        self._iter = async_iter

    @property
    def usage(self) -> dict[str, Any] | None:
        """Get usage info (available after iteration completes)."""
        return self._usage

    def set_usage(self, usage: dict[str, Any]) -> None:
        """Set usage info (called by the client at end of stream)."""
        self._usage = usage

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "GenerationStream":
        """Return self as async iterator."""
        return self

    async def __anext__(self) -> str:
        """Get next fragment from the underlying iterator."""
        if self._iter is None or self._closed:
            raise StopAsyncIteration
        try:
            return await self._iter.__anext__()
        except StopAsyncIteration:
            self._closed = True
            raise

    async def aclose(self) -> None:
        """Abandon the stream and release the connection."""
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._iter, "aclose", None)
        if aclose is not None:
            await aclose()


class ChatMessage(BaseModel):
    """A prior conversation message handed to the client for prompt building."""

    model_config = ConfigDict(frozen=True)

    role: str = Field(description="Role of the message sender: 'user', 'assistant', or 'system'")
    content: str = Field(description="Content of the message")


class GenerateRequest(BaseModel):
    """Body of ``POST /api/generate``."""

    model: str
    prompt: str
    stream: bool = True


class PullRequest(BaseModel):
    """Body of ``POST /api/pull``."""

    name: str
    stream: bool = False


class GenerateChunk(BaseModel):
    """One line of the ``/api/generate`` NDJSON stream."""

    model_config = ConfigDict(extra="ignore")

    response: str | None = None
    done: bool = False
    error: str | None = None
    total_duration: int | None = None
    load_duration: int | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None
    eval_duration: int | None = None

    def usage(self) -> dict[str, int]:
        """Statistics reported on the final line, without the missing ones."""
        stats = {
            "total_duration": self.total_duration,
            "load_duration": self.load_duration,
            "prompt_eval_count": self.prompt_eval_count,
            "eval_count": self.eval_count,
            "eval_duration": self.eval_duration,
        }
        return {key: value for key, value in stats.items() if value is not None}


class ModelTag(BaseModel):
    """One entry of the ``/api/tags`` catalog."""

    model_config = ConfigDict(extra="ignore")

    name: str
    size: int | None = None
    modified_at: str | None = None


class TagsResponse(BaseModel):
    """Body of ``GET /api/tags``."""

    model_config = ConfigDict(extra="ignore")

    models: list[ModelTag]
