"""
Tests for the key/value stores in caption_extractor/storage.py.
"""

import pytest
import pytest_asyncio

from caption_extractor.config import Settings
from caption_extractor.database import DatabaseEngine, get_database_url
from caption_extractor.storage import MemoryStore, SqlStore, create_store


class TestMemoryStore:
    @pytest.mark.asyncio
    async def test_set_get_remove(self):
        store = MemoryStore()
        assert await store.get("backendUrl") is None

        await store.set("backendUrl", "https://backend.test")
        assert await store.get("backendUrl") == "https://backend.test"

        await store.remove("backendUrl")
        assert await store.get("backendUrl") is None

    @pytest.mark.asyncio
    async def test_remove_missing_key(self):
        """Test that removing an absent key is a no-op."""
        store = MemoryStore()
        await store.remove("missing")
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_initial_values_copied(self):
        initial = {"backendUrl": "https://backend.test"}
        store = MemoryStore(initial)
        await store.set("backendUrl", "https://other.test")
        assert initial["backendUrl"] == "https://backend.test"

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert (await MemoryStore().health_check())["status"] == "healthy"


class TestSqlStore:
    """Tests for the SQLite-backed store."""

    @pytest_asyncio.fixture
    async def sql_store(self, tmp_path):
        engine = DatabaseEngine(database_url=get_database_url(str(tmp_path / "store.db")))
        await engine.init_db()
        yield SqlStore(engine)
        await engine.close()

    @pytest.mark.asyncio
    async def test_json_values_round_trip(self, sql_store):
        """Test that structured values come back as stored."""
        await sql_store.set("prefs", {"lang": "en", "retries": 0, "tags": ["a", "b"]})
        assert await sql_store.get("prefs") == {"lang": "en", "retries": 0, "tags": ["a", "b"]}

    @pytest.mark.asyncio
    async def test_overwrite_and_remove(self, sql_store):
        await sql_store.set("backendUrl", "https://one.test")
        await sql_store.set("backendUrl", "https://two.test")
        assert await sql_store.get("backendUrl") == "https://two.test"

        await sql_store.remove("backendUrl")
        assert await sql_store.get("backendUrl") is None

    @pytest.mark.asyncio
    async def test_undecodable_value(self, sql_store, caplog):
        """Test that a corrupt stored value reads as absent."""
        await sql_store.engine.set_entry("backendUrl", "{not json")
        assert await sql_store.get("backendUrl") is None
        assert "undecodable" in caplog.text

    @pytest.mark.asyncio
    async def test_health_check(self, sql_store):
        assert (await sql_store.health_check())["status"] == "healthy"


class TestCreateStore:
    def test_memory_backend(self):
        store = create_store(Settings(_env_file=None, storage_backend="memory"))
        assert isinstance(store, MemoryStore)

    def test_sqlite_backend(self, tmp_path):
        """Test that the sqlite backend uses the configured path."""
        path = str(tmp_path / "configured.db")
        store = create_store(Settings(_env_file=None, storage_backend="sqlite", database_path=path))
        assert isinstance(store, SqlStore)
        assert store.engine.database_url == get_database_url(path)
