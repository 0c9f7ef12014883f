"""
Tests for database module in caption_extractor/database.py.

This module tests the async SQLite key/value table with SQLModel.
"""

from pathlib import Path

import pytest
import pytest_asyncio

from caption_extractor.database import DatabaseEngine, get_database_url
from caption_extractor.models import StorageEntry


class TestGetDatabaseUrl:
    """Tests for get_database_url function."""

    def test_get_database_url_with_relative_path(self):
        """Test that relative paths are converted to absolute."""
        url = get_database_url("test.db")
        assert url.startswith("sqlite+aiosqlite:///")
        assert "test.db" in url
        # Should be an absolute path
        assert Path(url.replace("sqlite+aiosqlite:///", "")).is_absolute()

    def test_get_database_url_with_absolute_path(self):
        """Test that absolute paths are preserved."""
        url = get_database_url("/absolute/path/to/database.db")
        assert url == "sqlite+aiosqlite:////absolute/path/to/database.db"

    def test_get_database_url_in_memory(self):
        assert get_database_url(":memory:") == "sqlite+aiosqlite:///:memory:"

    def test_get_database_url_default_uses_settings(self):
        """Test that None path uses settings.database_path."""
        url = get_database_url(None)
        assert url.startswith("sqlite+aiosqlite:///")


class TestDatabaseEngine:
    """Tests for DatabaseEngine class."""

    @pytest_asyncio.fixture
    async def temp_db_engine(self, tmp_path):
        """Create a database engine with a temporary file."""
        engine = DatabaseEngine(database_url=get_database_url(str(tmp_path / "test.db")))
        await engine.init_db()
        yield engine
        await engine.close()

    @pytest.mark.asyncio
    async def test_close_engine(self, temp_db_engine):
        """Test that close properly disposes the engine."""
        await temp_db_engine.close()
        # Engine should be None after close
        assert temp_db_engine._engine is None

    @pytest.mark.asyncio
    async def test_missing_entry(self, temp_db_engine):
        assert await temp_db_engine.get_entry("backendUrl") is None

    @pytest.mark.asyncio
    async def test_insert_and_query_entry(self, temp_db_engine):
        """Test inserting and reading back an entry."""
        stored = await temp_db_engine.set_entry("backendUrl", '"https://backend.test"')
        assert isinstance(stored, StorageEntry)

        entry = await temp_db_engine.get_entry("backendUrl")
        assert entry.key == "backendUrl"
        assert entry.value == '"https://backend.test"'
        assert entry.updated_at is not None

    @pytest.mark.asyncio
    async def test_update_existing_entry(self, temp_db_engine):
        """Test that writing an existing key replaces its value."""
        first = await temp_db_engine.set_entry("backendUrl", '"https://one.test"')
        second = await temp_db_engine.set_entry("backendUrl", '"https://two.test"')

        entry = await temp_db_engine.get_entry("backendUrl")
        assert entry.value == '"https://two.test"'
        assert second.updated_at >= first.updated_at

    @pytest.mark.asyncio
    async def test_delete_entry(self, temp_db_engine):
        await temp_db_engine.set_entry("authToken", '"secret"')
        assert await temp_db_engine.delete_entry("authToken") == 1
        assert await temp_db_engine.delete_entry("authToken") == 0
        assert await temp_db_engine.get_entry("authToken") is None

    @pytest.mark.asyncio
    async def test_health_check(self, temp_db_engine):
        health = await temp_db_engine.health_check()
        assert health == {"status": "healthy", "database": "connected"}

    @pytest.mark.asyncio
    async def test_data_survives_reopen(self, tmp_path):
        """Test that entries persist across engine instances."""
        url = get_database_url(str(tmp_path / "persist.db"))
        first = DatabaseEngine(database_url=url)
        await first.init_db()
        await first.set_entry("backendUrl", '"https://backend.test"')
        await first.close()

        second = DatabaseEngine(database_url=url)
        await second.init_db()
        entry = await second.get_entry("backendUrl")
        await second.close()
        assert entry.value == '"https://backend.test"'


class TestInMemoryEngine:
    @pytest.mark.asyncio
    async def test_in_memory_database_keeps_data(self):
        """Test that the in-memory database persists between sessions."""
        engine = DatabaseEngine(database_url=get_database_url(":memory:"))
        await engine.init_db()
        await engine.set_entry("key", '"value"')
        entry = await engine.get_entry("key")
        await engine.close()
        assert entry.value == '"value"'
