"""JSON file conversation store backend.

Each key is kept in its own file, ``<directory>/<key>.json``. Writes go to a
temporary file that is then renamed over the target, so a crash mid-write
leaves the previous state intact.
"""

import asyncio
import os
from pathlib import Path

from ..config import DEFAULT_STORE_DIR, DEFAULT_STORE_KEY
from .base import ConversationStore
from .errors import PersistenceCorrupt, StoreNotConnected


class JSONFileConversationStore(ConversationStore):
    """File-backed conversation store.

    Stores the conversation list as a JSON document on disk.
    Supports persistent storage across sessions.
    """

    def __init__(
        self,
        directory: str | Path = DEFAULT_STORE_DIR,
        key: str = DEFAULT_STORE_KEY
    ):
        super().__init__(key)
        self._directory = Path(directory).expanduser()
        self._connected = False

    @property
    def path(self) -> Path:
        return self._directory / f"{self._key}.json"

    async def connect(self) -> None:
        """Create the storage directory."""
        await asyncio.to_thread(self._directory.mkdir, parents=True, exist_ok=True)
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def _read_blob(self) -> str | None:
        self._require_connection()
        return await asyncio.to_thread(self._read_file)

    async def _write_blob(self, blob: str) -> None:
        self._require_connection()
        await asyncio.to_thread(self._write_file, blob)

    def _read_file(self) -> str | None:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceCorrupt(f"Cannot read {self.path}: {exc}") from exc

    def _write_file(self, blob: str) -> None:
        tmp_path = self.path.with_suffix(".json.tmp")
        tmp_path.write_text(blob, encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _require_connection(self) -> None:
        if not self._connected:
            raise StoreNotConnected("JSON store is not connected; call connect() first")

    @property
    def backend_type(self) -> str:
        return "json"
