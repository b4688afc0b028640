"""Upload, download, shorten and redirect: the entry points the API calls.

Each operation validates first, then touches storage, then records. An
operation either returns its result or raises one DropError subclass.
"""
import logging
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from pydantic import AnyUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.services.errors import (
    BannedMimeTypeError,
    DropError,
    DuplicateRecordError,
    PayloadTooLargeError,
    ValidationError,
)
from app.services.file_storage import StorageRegistry
from app.services.id_generator import ShortIdGenerator
from app.services.record_store import RecordStore
from app.services.records import FileRecord, URLRecord
from app.services.stream_pump import DOWNLOAD_LIMITS, UPLOAD_LIMITS, ByteSource, TransferLimits

logger = logging.getLogger(__name__)

_url_adapter = TypeAdapter(AnyUrl)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass(frozen=True)
class TransferPolicy:
    upload: TransferLimits = UPLOAD_LIMITS
    download: TransferLimits = DOWNLOAD_LIMITS
    max_file_size: Optional[int] = None
    banned_mime_types: frozenset[str] = field(default_factory=frozenset)
    max_url_length: int = 256


@dataclass(frozen=True)
class Download:
    """An opened blob plus the metadata needed for response headers."""
    chunks: AsyncIterator[bytes]
    size_bytes: int
    mime_type: str
    file_name: str


def validate_destination(destination: str, max_length: int = 256) -> str:
    """Check a URL is syntactically valid and absolute. No liveness or scheme checks."""
    destination = destination.strip()
    if not destination or len(destination) > max_length:
        raise ValidationError(f"Illegal URL. Length must be 1~{max_length}")
    try:
        _url_adapter.validate_python(destination)
    except PydanticValidationError:
        raise ValidationError("URL is not valid") from None
    return destination


class TransferService:
    def __init__(
        self,
        record_store: RecordStore,
        registry: StorageRegistry,
        id_generator: ShortIdGenerator,
        policy: TransferPolicy = TransferPolicy(),
    ):
        self.record_store = record_store
        self.registry = registry
        self.id_generator = id_generator
        self.policy = policy

    # ── Files ─────────────────────────────────────────────────────

    def validate_upload(self, mime_type: Optional[str], size_hint: Optional[int]) -> str:
        mime_type = (mime_type or DEFAULT_MIME_TYPE).strip()
        base_type = mime_type.split(";", 1)[0].strip().lower()
        if base_type in self.policy.banned_mime_types:
            raise BannedMimeTypeError(f"You cannot upload this kind of file: {base_type}")
        max_size = self.policy.max_file_size
        if max_size is not None and size_hint is not None and size_hint > max_size:
            raise PayloadTooLargeError(f"File is too big. Max: {max_size // 1024} KiB")
        return mime_type[:255]

    async def upload(
        self,
        source: ByteSource,
        *,
        size_hint: Optional[int],
        file_name: Optional[str],
        mime_type: Optional[str],
        source_address: str,
    ) -> FileRecord:
        """Store an incoming stream and create its record.

        The record is durable before this returns. If writing the record
        fails, the stored blob is deleted again.
        """
        try:
            mime_type = self.validate_upload(mime_type, size_hint)
            record_id = await self.id_generator.next(self.record_store.file_exists)
        except DropError:
            await source.close()
            raise
        file_name = ((file_name or "").strip() or "unnamed")[:255]
        backend = self.registry.default
        limits = TransferLimits(
            chunk_size=self.policy.upload.chunk_size,
            min_throughput=self.policy.upload.min_throughput,
            max_bytes=self.policy.max_file_size,
        )

        logger.info(f"Receiving file: {file_name} ({(size_hint or 0) / 1024 / 1024:.1f}M), {mime_type}")
        started = time.monotonic()
        blob = await backend.store(source, size_hint, limits)

        try:
            record = FileRecord(
                id=record_id,
                created_at=datetime.now(timezone.utc),
                storage_identifier=blob.identifier,
                size_bytes=blob.size_bytes,
                file_name=file_name,
                mime_type=mime_type,
                source_address=source_address,
                backend_tag=backend.tag,
            )
            record = await self._put_with_fresh_id(record, self.record_store.file_exists)
        except BaseException:
            await self._delete_blob_quietly(backend.tag, blob.identifier)
            raise

        logger.info(
            f"File {file_name} ({mime_type}) is saved as {record.id}! "
            f"Took {time.monotonic() - started:.2f}s"
        )
        return record

    async def download(self, record: FileRecord) -> Download:
        backend = self.registry.get(record.backend_tag)
        source = await backend.open(record.storage_identifier)
        pump = self.policy.download.pump(source, size_hint=record.size_bytes, label=f"download {record.id}")
        return Download(
            chunks=pump.chunks(),
            size_bytes=record.size_bytes,
            mime_type=record.mime_type,
            file_name=record.file_name,
        )

    async def get_file(self, record_id: str) -> FileRecord:
        return await self.record_store.get_file(record_id)

    async def delete_file(self, record: FileRecord) -> None:
        """Delete the blob, then the record."""
        await self.registry.get(record.backend_tag).delete(record.storage_identifier)
        await self.record_store.delete(record)
        logger.info(f"Deleted file {record.id} ({record.file_name})")

    # ── URLs ──────────────────────────────────────────────────────

    async def shorten(self, destination: str, *, source_address: str) -> URLRecord:
        destination = validate_destination(destination, self.policy.max_url_length)
        record = URLRecord(
            id=await self.id_generator.next(self.record_store.url_exists),
            created_at=datetime.now(timezone.utc),
            destination=destination,
            source_address=source_address,
        )
        try:
            record = await self._put_with_fresh_id(record, self.record_store.url_exists)
        except DropError:
            logger.warning(f"Can't shorten a url: {destination}")
            raise
        return record

    async def resolve(self, record_id: str) -> str:
        """Destination URL for a short ID. Raises NotFoundError."""
        return (await self.record_store.get_url(record_id)).destination

    # ── Helpers ───────────────────────────────────────────────────

    async def _put_with_fresh_id(self, record, exists):
        """Store a record, drawing one new ID if a concurrent writer took its ID first."""
        try:
            await self.record_store.put(record)
            return record
        except DuplicateRecordError:
            logger.warning(f"Short ID {record.id} was taken concurrently, drawing another")
        record = replace(record, id=await self.id_generator.next(exists))
        await self.record_store.put(record)
        return record

    async def _delete_blob_quietly(self, tag: str, identifier: str) -> None:
        try:
            await self.registry.get(tag).delete(identifier)
        except DropError as e:
            logger.error(f"Could not remove blob {identifier} after failed upload: {e}")
