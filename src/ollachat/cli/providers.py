"""Provider factory functions for CLI.

Centralizes creation of the inference client and conversation store from
environment variables. Hides configuration details from command
implementations.
"""

import os
from pathlib import Path

from rich.console import Console

from ..config import DEFAULT_OLLAMA_HOST, DEFAULT_STORE_DIR
from ..llm import InferenceClient, create_inference_client
from ..store import ConversationStore, create_conversation_store

# Default console for output
_console = Console()


def get_client() -> InferenceClient:
    """Create the Ollama client from environment variables.

    Environment variables:
        OLLAMA_HOST: Server root (default: http://localhost:11434)
        OLLAMA_MODEL: Default model for generation (optional)
    """
    host = os.getenv("OLLAMA_HOST", DEFAULT_OLLAMA_HOST)
    if "://" not in host:
        host = f"http://{host}"
    return create_inference_client(
        "ollama",
        host=host,
        model=get_default_model(),
    )


def get_store(console: Console | None = None, backend: str | None = None) -> ConversationStore:
    """Create the conversation store from environment variables.

    Args:
        console: Optional Rich console for output
        backend: Override for OLLACHAT_STORE

    Environment variables:
        OLLACHAT_STORE: Backend type (sqlite, json, memory; default: sqlite)
        OLLACHAT_STORE_PATH: Database file for sqlite (default:
            ~/.ollachat/conversations.db) or directory for json (default: ~/.ollachat)
    """
    import typer

    con = console or _console
    store_backend = (backend or os.getenv("OLLACHAT_STORE", "sqlite")).lower()
    store_path = os.getenv("OLLACHAT_STORE_PATH")

    if store_backend == "sqlite":
        path = Path(store_path or Path(DEFAULT_STORE_DIR) / "conversations.db")
        return create_conversation_store("sqlite", path=path)

    elif store_backend == "json":
        return create_conversation_store("json", directory=Path(store_path or DEFAULT_STORE_DIR))

    elif store_backend == "memory":
        return create_conversation_store("memory")

    con.print(f"[red]Error: Unknown store backend: {store_backend}[/red]")
    raise typer.Exit(code=1)


def get_default_model() -> str | None:
    """Preferred model from OLLAMA_MODEL, if set."""
    return os.getenv("OLLAMA_MODEL") or None


def get_log_level() -> str:
    """Log level from OLLACHAT_LOG_LEVEL (default: warning)."""
    return os.getenv("OLLACHAT_LOG_LEVEL", "warning")


def store_location(store: ConversationStore) -> str:
    """Human-readable location of a store, for status output."""
    location = getattr(store, "db_path", None) or getattr(store, "path", None)
    return str(location) if location is not None else "(in memory)"
