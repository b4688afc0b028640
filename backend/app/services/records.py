"""Immutable in-memory records for stored files and shortened URLs.

These are what the record store caches and hands out. They are frozen so a
cached entry can be shared by any number of request handlers and the expiry
sweeper without copying. Persisted via the SQLAlchemy rows in app.models.
"""
from dataclasses import dataclass
from datetime import datetime, timezone


def as_utc(value: datetime) -> datetime:
    """Normalise a timestamp to aware UTC (SQLite hands back naive values)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class FileRecord:
    id: str
    created_at: datetime
    storage_identifier: str
    size_bytes: int
    file_name: str
    mime_type: str
    source_address: str
    backend_tag: str

    def __post_init__(self):
        if self.size_bytes < 0:
            raise ValueError(f"size_bytes must be non-negative, got {self.size_bytes}")
        object.__setattr__(self, "created_at", as_utc(self.created_at))


@dataclass(frozen=True)
class URLRecord:
    id: str
    created_at: datetime
    destination: str
    source_address: str

    def __post_init__(self):
        object.__setattr__(self, "created_at", as_utc(self.created_at))
