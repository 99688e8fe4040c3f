"""Pytest configuration and shared fixtures."""
import asyncio
import json
from collections import deque
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx
import pytest

from ollachat.llm import ChatMessage, GenerationStream, InferenceClient, OllamaClient
from ollachat.store import create_conversation_store
from ollachat.store.in_memory import InMemoryConversationStore


def ndjson(*objects: Any) -> bytes:
    """Encode objects as a newline-delimited JSON body."""
    return "".join(json.dumps(obj) + "\n" for obj in objects).encode()


def generate_body(*fragments: str, **final: Any) -> bytes:
    """A /api/generate body streaming ``fragments`` then a done line."""
    lines = [{"model": "llama3.2", "response": fragment, "done": False} for fragment in fragments]
    lines.append({"model": "llama3.2", "response": "", "done": True, **final})
    return ndjson(*lines)


class TrackingStream(httpx.AsyncByteStream):
    """Response body that yields chunks, optionally fails, and records closing."""

    def __init__(self, chunks: Sequence[bytes], error: Exception | None = None):
        self.chunks = list(chunks)
        self.error = error
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeInferenceClient(InferenceClient):
    """Scripted client for driving ChatSession without a server.

    Each ``stream_generate`` call consumes the next script. A script may hold
    an ``asyncio.Event`` gate that is awaited after ``gate_after`` fragments,
    which lets a test observe the session mid-stream.
    """

    def __init__(self, models: list[str] | None = None):
        self.models = ["llama3.2", "qwen3"] if models is None else models
        self.list_error: Exception | None = None
        self.scripts: deque[dict[str, Any]] = deque()
        self.calls: list[tuple[str, list[ChatMessage], str]] = []
        self.closed_streams = 0
        self.pulled: list[str] = []

    def script(
        self,
        fragments: Sequence[str] = (),
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
        gate_after: int = 1,
    ) -> None:
        self.scripts.append({
            "fragments": list(fragments),
            "error": error,
            "gate": gate,
            "gate_after": gate_after,
        })

    async def list_models(self) -> list[str]:
        if self.list_error is not None:
            raise self.list_error
        return list(self.models)

    async def stream_generate(
        self,
        prompt: str,
        prior_messages: Sequence[ChatMessage],
        model: str,
        **kwargs: Any
    ) -> GenerationStream:
        self.calls.append((prompt, list(prior_messages), model))
        script = self.scripts.popleft() if self.scripts else {
            "fragments": ["ok"], "error": None, "gate": None, "gate_after": 0,
        }
        stream = GenerationStream(model)
        stream.attach(self._fragments(script))
        return stream

    async def _fragments(self, script: dict[str, Any]) -> AsyncIterator[str]:
        gate = script["gate"]
        try:
            for index, fragment in enumerate(script["fragments"]):
                if gate is not None and index == script["gate_after"]:
                    await gate.wait()
                yield fragment
            if gate is not None and script["gate_after"] >= len(script["fragments"]):
                await gate.wait()
            if script["error"] is not None:
                raise script["error"]
        finally:
            self.closed_streams += 1

    async def pull_model(self, name: str) -> str:
        self.pulled.append(name)
        return "success"

    async def close(self) -> None:
        pass


class FlakyStore(InMemoryConversationStore):
    """Memory store whose writes can be made to fail or to yield to the loop."""

    def __init__(self, **kwargs: Any):
        super().__init__(**kwargs)
        self.write_error: Exception | None = None
        self.yield_on_write = False

    async def _write_blob(self, blob: str) -> None:
        if self.yield_on_write:
            await asyncio.sleep(0)
        if self.write_error is not None:
            raise self.write_error
        await super()._write_blob(blob)


async def settle() -> None:
    """Let pending tasks run until they block."""
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def fake_client():
    """Scripted inference client."""
    return FakeInferenceClient()


@pytest.fixture
def memory_store():
    """Connected-on-demand in-memory conversation store."""
    return create_conversation_store("memory")


@pytest.fixture
async def mock_ollama():
    """Factory for an OllamaClient backed by an httpx.MockTransport handler."""
    clients: list[OllamaClient] = []

    def _make(handler) -> OllamaClient:
        client = OllamaClient(host="http://ollama.test", transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()
