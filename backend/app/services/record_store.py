"""Record store: durable file/URL metadata with an in-memory read-through cache.

Reads hit the cache first and fall back to the database; hits are cached,
misses are not. Writes go to the database first and reach the cache only
after the commit succeeds.

The cache is shared by request handlers and the expiry sweeper. Records are
frozen, so readers need no locking. A per-ID asyncio.Lock serialises a cache
populate against a delete of the same ID, so a lookup racing a delete can
never resurrect the deleted record in the cache.

By default the cache is unbounded, which is fine at the scale this service
runs at. Pass a positive cache_size to get least-recently-used eviction.
"""
import asyncio
import logging
import weakref
from collections import OrderedDict
from datetime import datetime
from typing import Generic, Optional, TypeVar

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models import ShortUrl, StoredFile
from app.services.errors import DuplicateRecordError, NotFoundError, PersistenceError
from app.services.records import FileRecord, URLRecord

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class RecordCache(Generic[K, V]):
    """Dict-backed cache. capacity <= 0 means unbounded, otherwise LRU."""

    def __init__(self, capacity: int = 0):
        self.capacity = capacity
        self._entries: OrderedDict[K, V] = OrderedDict()

    def get(self, key: K) -> Optional[V]:
        value = self._entries.get(key)
        if value is not None and self.capacity > 0:
            self._entries.move_to_end(key)
        return value

    def put(self, key: K, value: V) -> None:
        self._entries[key] = value
        if self.capacity > 0:
            self._entries.move_to_end(key)
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def pop(self, key: K) -> None:
        self._entries.pop(key, None)

    def __contains__(self, key: K) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def _file_from_row(row: StoredFile) -> FileRecord:
    return FileRecord(
        id=row.id,
        created_at=row.created_at,
        storage_identifier=row.storage_identifier,
        size_bytes=row.size_bytes,
        file_name=row.file_name,
        mime_type=row.mime_type,
        source_address=row.source_address,
        backend_tag=row.backend_tag,
    )


def _url_from_row(row: ShortUrl) -> URLRecord:
    return URLRecord(
        id=row.id,
        created_at=row.created_at,
        destination=row.destination,
        source_address=row.source_address,
    )


class RecordStore:
    """Durable store for FileRecord and URLRecord, keyed by short ID."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cache_size: int = 0):
        self._session_factory = session_factory
        self._files: RecordCache[str, FileRecord] = RecordCache(cache_size)
        self._urls: RecordCache[str, URLRecord] = RecordCache(cache_size)
        # Locks live only as long as someone holds them
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, namespace: str, record_id: str) -> asyncio.Lock:
        key = (namespace, record_id)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    # ── Writes ────────────────────────────────────────────────────

    async def put(self, record: FileRecord | URLRecord) -> None:
        """Insert a new record. Raises PersistenceError if the database rejects it."""
        if isinstance(record, FileRecord):
            row = StoredFile(
                id=record.id,
                created_at=record.created_at,
                storage_identifier=record.storage_identifier,
                size_bytes=record.size_bytes,
                file_name=record.file_name,
                mime_type=record.mime_type,
                source_address=record.source_address,
                backend_tag=record.backend_tag,
            )
            cache = self._files
        elif isinstance(record, URLRecord):
            row = ShortUrl(
                id=record.id,
                created_at=record.created_at,
                destination=record.destination,
                source_address=record.source_address,
            )
            cache = self._urls
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

        try:
            async with self._session_factory() as db:
                db.add(row)
                await db.commit()
        except IntegrityError as e:
            logger.warning(f"put {type(record).__name__} {record.id} rejected: {e.orig}")
            raise DuplicateRecordError(f"Record {record.id} already exists") from e
        except SQLAlchemyError as e:
            logger.error(f"put {type(record).__name__} {record.id} failed: {e}")
            raise PersistenceError(f"Could not store record {record.id}") from e

        cache.put(record.id, record)

    async def delete(self, record: FileRecord | URLRecord) -> None:
        """Remove a record from the database and the cache. Deleting twice is a no-op."""
        if isinstance(record, FileRecord):
            namespace, model, cache = "file", StoredFile, self._files
        elif isinstance(record, URLRecord):
            namespace, model, cache = "url", ShortUrl, self._urls
        else:
            raise TypeError(f"Unsupported record type: {type(record).__name__}")

        async with self._lock_for(namespace, record.id):
            try:
                async with self._session_factory() as db:
                    await db.execute(delete(model).where(model.id == record.id))
                    await db.commit()
            except SQLAlchemyError as e:
                logger.error(f"delete {namespace} record {record.id} failed: {e}")
                raise PersistenceError(f"Could not delete record {record.id}") from e
            cache.pop(record.id)

    # ── Reads ─────────────────────────────────────────────────────

    async def get_file(self, record_id: str) -> FileRecord:
        cached = self._files.get(record_id)
        if cached is not None:
            return cached
        async with self._lock_for("file", record_id):
            row = await self._fetch(StoredFile, record_id)
            if row is None:
                raise NotFoundError(f"Can't find a file with ID {record_id}")
            record = _file_from_row(row)
            self._files.put(record_id, record)
            return record

    async def get_url(self, record_id: str) -> URLRecord:
        cached = self._urls.get(record_id)
        if cached is not None:
            return cached
        async with self._lock_for("url", record_id):
            row = await self._fetch(ShortUrl, record_id)
            if row is None:
                raise NotFoundError(f"Can't find a URL with ID {record_id}")
            record = _url_from_row(row)
            self._urls.put(record_id, record)
            return record

    async def file_exists(self, record_id: str) -> bool:
        if record_id in self._files:
            return True
        return await self._fetch(StoredFile, record_id) is not None

    async def url_exists(self, record_id: str) -> bool:
        if record_id in self._urls:
            return True
        return await self._fetch(ShortUrl, record_id) is not None

    async def list_expired_files(
        self,
        cutoff: datetime,
        limit: int = 500,
        after: Optional[tuple[datetime, str]] = None,
    ) -> list[FileRecord]:
        """File records created at or before `cutoff`, oldest first.

        `after` is a (created_at, id) cursor: only records ordered strictly
        after it are returned, so callers can page past records they kept.
        """
        query = select(StoredFile).where(StoredFile.created_at <= cutoff)
        if after is not None:
            after_created, after_id = after
            query = query.where(
                or_(
                    StoredFile.created_at > after_created,
                    and_(StoredFile.created_at == after_created, StoredFile.id > after_id),
                )
            )
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    query.order_by(StoredFile.created_at, StoredFile.id).limit(limit)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"list_expired_files failed: {e}")
            raise PersistenceError("Could not query expired files") from e
        return [_file_from_row(row) for row in rows]

    async def _fetch(self, model, record_id: str):
        try:
            async with self._session_factory() as db:
                return await db.get(model, record_id)
        except SQLAlchemyError as e:
            logger.error(f"fetch {model.__tablename__} {record_id} failed: {e}")
            raise PersistenceError(f"Could not load record {record_id}") from e
