import json
import logging
import weakref
from collections.abc import AsyncIterator, Iterable, Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from ...config import CATALOG_TIMEOUT_SECONDS, CONNECT_TIMEOUT_SECONDS, DEFAULT_OLLAMA_HOST
from ..base import InferenceClient
from ..errors import BadResponse, EmptyGeneration, ServerError, ServerUnreachable, TransportError
from ..models import (
    ChatMessage,
    GenerateChunk,
    GenerateRequest,
    GenerationStream,
    PullRequest,
    TagsResponse,
)
from ..prompting import build_prompt, strip_role_echo

logger = logging.getLogger(__name__)


def _error_from_line(line: str) -> str | None:
    """Return the ``error`` string of a JSON line, if it carries one."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


def _error_from_lines(lines: Iterable[str], status_code: int) -> str:
    for line in lines:
        message = _error_from_line(line)
        if message is not None:
            return message
    return f"HTTP Error {status_code}"


def _translate_transport_error(exc: httpx.TransportError, host: str) -> TransportError:
    """Map an httpx transport failure onto the client's error taxonomy."""
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return ServerUnreachable(f"Could not connect to Ollama at {host}: {exc}")
    reason = str(exc) or type(exc).__name__
    return TransportError(f"Connection to Ollama at {host} failed: {reason}")


class OllamaClient(InferenceClient):
    """Ollama inference client over the native HTTP API.

    Hidden design decisions:
    - HTTP client setup (httpx, connect timeout only for generation)
    - Flat prompt assembly for ``/api/generate``
    - NDJSON stream parsing and first-fragment cleanup
    - Mapping of httpx failures onto ``InferenceError`` subclasses

    The base URL and the underlying ``httpx.AsyncClient`` are fixed at
    construction. Open streams are tracked so that ``close()`` can release
    them; that bookkeeping is only touched from the owning event loop.
    """

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        model: str | None = None,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
        **client_kwargs: Any
    ):
        """Initialize the Ollama client.

        Args:
            host: Server root, e.g. ``http://localhost:11434``
            model: Default model used when ``stream_generate`` gets none
            connect_timeout: Seconds to wait for a connection
            transport: Custom httpx transport (tests use ``httpx.MockTransport``)
            **client_kwargs: Additional kwargs for ``httpx.AsyncClient``
        """
        self._host = host.rstrip("/")
        self._model = model
        self._client = httpx.AsyncClient(
            base_url=f"{self._host}/api",
            timeout=httpx.Timeout(None, connect=connect_timeout),
            transport=transport,
            **client_kwargs
        )
        self._open_streams: weakref.WeakSet[GenerationStream] = weakref.WeakSet()

    @property
    def host(self) -> str:
        return self._host

    @property
    def model(self) -> str | None:
        """Get the default model name."""
        return self._model

    @property
    def open_streams(self) -> int:
        """Number of generation streams not yet finished or closed."""
        return sum(1 for stream in self._open_streams if not stream.closed)

    async def list_models(self) -> list[str]:
        """List models installed on the server via ``GET /api/tags``."""
        logger.debug("Fetching models from %s/api/tags", self._host)
        try:
            response = await self._client.get("/tags", timeout=CATALOG_TIMEOUT_SECONDS)
        except httpx.TransportError as exc:
            raise _translate_transport_error(exc, self._host) from exc

        if not response.is_success:
            message = _error_from_lines(response.text.splitlines(), response.status_code)
            raise ServerError(message, status_code=response.status_code)

        try:
            tags = TagsResponse.model_validate_json(response.content)
        except ValidationError as exc:
            raise BadResponse(f"Unexpected model catalog payload: {exc.error_count()} error(s)") from exc

        models = [tag.name for tag in tags.models]
        logger.debug("Available models: %s", models)
        return models

    async def stream_generate(
        self,
        prompt: str,
        prior_messages: Sequence[ChatMessage],
        model: str | None = None,
        **kwargs: Any
    ) -> GenerationStream:
        """Start a streaming generation via ``POST /api/generate``.

        Args:
            prompt: The new user prompt
            prior_messages: Conversation history preceding the prompt
            model: Model to use (overrides default)
            **kwargs: Extra top-level request fields (e.g. ``options``)

        Returns:
            GenerationStream that yields text fragments and captures usage info
        """
        model_to_use = model or self._model
        if not model_to_use:
            raise ValueError("No model given and no default model configured")

        full_prompt = build_prompt(prompt, prior_messages)
        logger.debug("Full prompt for %s:\n%s", model_to_use, full_prompt)

        payload = GenerateRequest(model=model_to_use, prompt=full_prompt).model_dump()
        payload.update(kwargs)

        stream = GenerationStream(model_to_use)
        stream.attach(self._stream_generator(stream, payload))
        self._open_streams.add(stream)
        return stream

    async def _stream_generator(
        self,
        stream: GenerationStream,
        payload: dict[str, Any],
    ) -> AsyncIterator[str]:
        """Internal generator that yields fragments and captures usage."""
        yielded = False
        try:
            async with self._client.stream("POST", "/generate", json=payload) as response:
                logger.debug("Generate response status: %s", response.status_code)
                if not response.is_success:
                    message = f"HTTP Error {response.status_code}"
                    async for line in response.aiter_lines():
                        error = _error_from_line(line)
                        if error is not None:
                            message = error
                            break
                    raise ServerError(message, status_code=response.status_code)

                async for line in response.aiter_lines():
                    if not line.strip():
                        continue
                    try:
                        chunk = GenerateChunk.model_validate_json(line)
                    except ValidationError:
                        logger.debug("Skipping malformed stream line: %r", line[:200])
                        continue

                    if chunk.error:
                        raise ServerError(chunk.error, status_code=response.status_code)

                    if chunk.response:
                        # Only the first fragment may carry an "Assistant:" echo
                        fragment = chunk.response if yielded else strip_role_echo(chunk.response)
                        if fragment:
                            yielded = True
                            yield fragment

                    if chunk.done:
                        stream.set_usage(chunk.usage())
                        if not yielded:
                            raise EmptyGeneration()
                        logger.info(
                            "Generation with %s completed (%s tokens)",
                            payload["model"],
                            chunk.eval_count if chunk.eval_count is not None else "?",
                        )
                        return

                if not yielded:
                    raise EmptyGeneration("No response received from the model")
        except httpx.TransportError as exc:
            raise _translate_transport_error(exc, self._host) from exc
        finally:
            self._open_streams.discard(stream)

    async def pull_model(self, name: str) -> str:
        """Pull a model onto the server via ``POST /api/pull`` (non-streaming)."""
        logger.info("Pulling model %s", name)
        try:
            response = await self._client.post(
                "/pull",
                json=PullRequest(name=name).model_dump(),
                timeout=httpx.Timeout(None, connect=CONNECT_TIMEOUT_SECONDS),
            )
        except httpx.TransportError as exc:
            raise _translate_transport_error(exc, self._host) from exc

        if not response.is_success:
            message = _error_from_lines(response.text.splitlines(), response.status_code)
            raise ServerError(message, status_code=response.status_code)

        try:
            body = response.json()
        except json.JSONDecodeError:
            return "success"
        if isinstance(body, dict) and isinstance(body.get("status"), str):
            return body["status"]
        return "success"

    async def health_check(self) -> bool:
        """Return True when ``/api/tags`` answers with a 2xx status."""
        try:
            response = await self._client.get("/tags", timeout=CATALOG_TIMEOUT_SECONDS)
        except httpx.HTTPError:
            return False
        return response.is_success

    async def close(self) -> None:
        """Close open streams, then the HTTP client."""
        for stream in list(self._open_streams):
            await stream.aclose()
        self._open_streams.clear()
        await self._client.aclose()
