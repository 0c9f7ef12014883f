"""
Opaque key/value storage.

Holds small user settings, notably the submission backend URL under the
``backendUrl`` key. Values are any JSON-serializable object.
"""

import json
import logging
from typing import Any, Protocol

from caption_extractor.config import Settings, settings as default_settings
from caption_extractor.database import DatabaseEngine, get_database_url

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store; contents are lost on restart."""

    def __init__(self, initial: dict[str, Any] | None = None):
        self._data: dict[str, Any] = dict(initial or {})

    async def get(self, key: str) -> Any | None:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def health_check(self) -> dict[str, str]:
        return {"status": "healthy", "storage": "memory"}


class SqlStore:
    """SQLite-backed store. Values are stored JSON-encoded."""

    def __init__(self, engine: DatabaseEngine):
        self.engine = engine

    async def get(self, key: str) -> Any | None:
        entry = await self.engine.get_entry(key)
        if entry is None:
            return None
        try:
            return json.loads(entry.value)
        except json.JSONDecodeError:
            logger.warning(f"Discarding undecodable value stored under {key!r}")
            return None

    async def set(self, key: str, value: Any) -> None:
        await self.engine.set_entry(key, json.dumps(value))

    async def remove(self, key: str) -> None:
        await self.engine.delete_entry(key)

    async def health_check(self) -> dict[str, str]:
        return await self.engine.health_check()


def create_store(config: Settings | None = None) -> MemoryStore | SqlStore:
    """
    Create the store selected by ``storage_backend``.

    A SqlStore still needs ``await store.engine.init_db()`` before use.
    """
    config = config or default_settings
    if config.storage_backend == "sqlite":
        return SqlStore(DatabaseEngine(get_database_url(config.database_path)))
    return MemoryStore()
