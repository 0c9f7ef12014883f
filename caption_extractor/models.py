"""
SQLModel database models for caption-extractor.

The only persisted data is the opaque key/value store used for user
settings such as the submission backend URL.
"""

from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Return current UTC time as naive datetime for SQLite compatibility.

    SQLite stores datetimes as strings without timezone info. When retrieved,
    they become timezone-naive datetimes.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StorageEntry(SQLModel, table=True):
    """One key of the persistent key/value store. Values are JSON-encoded."""

    __tablename__ = "storage_entries"

    key: str = Field(primary_key=True, max_length=200, description="Storage key")
    value: str = Field(description="JSON-encoded value")
    updated_at: datetime = Field(default_factory=utcnow, description="Last write time")
