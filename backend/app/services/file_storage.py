"""File storage abstraction. Local filesystem backend plus a registry keyed by backend tag.

A backend persists a byte stream and hands back an opaque storage identifier.
Identifiers are unrelated to short record IDs, so knowing a record ID never
lets anyone guess a path on disk.
"""
import errno
import logging
import re
import shutil
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

import aiofiles
import aiofiles.os

from app.services.errors import DiskFullError, NotFoundError, StorageError, StorageIOError
from app.services.stream_pump import UPLOAD_LIMITS, ByteSource, TransferLimits

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    identifier: str
    size_bytes: int


class FileStorageBackend(ABC):
    """Contract every storage backend satisfies. Callers only ever see identifiers."""

    tag: str

    @abstractmethod
    async def store(self, source: ByteSource, size_hint: Optional[int] = None,
                    limits: TransferLimits = UPLOAD_LIMITS) -> StoredBlob:
        """Persist bytes from `source` and return the new identifier and byte count.

        Raises DiskFullError when the transfer would eat into the reserved
        space, TransferInterruptedError on a stall, StorageIOError on medium
        failure. On any failure nothing is left under the identifier.
        """

    @abstractmethod
    async def open(self, identifier: str) -> ByteSource:
        """Open a stored blob for reading. Raises NotFoundError or StorageIOError."""

    @abstractmethod
    async def delete(self, identifier: str) -> None:
        """Remove a blob. Unknown identifiers are not an error."""

    @abstractmethod
    async def exists(self, identifier: str) -> bool:
        ...


class _GuardedBlobWriter:
    """Sink that re-checks free space once the upload outgrows its size hint."""

    def __init__(self, handle, storage: "LocalFileStorage", size_hint: Optional[int]):
        self._handle = handle
        self._storage = storage
        self._size_hint = size_hint
        self.written = 0

    async def write(self, data: bytes) -> int:
        if self._size_hint is None or self.written + len(data) > self._size_hint:
            self._storage.check_free_space(len(data))
        await self._handle.write(data)
        self.written += len(data)
        return len(data)

    async def close(self) -> None:
        await self._handle.close()


class LocalFileStorage(FileStorageBackend):
    """Directory-rooted store. Blobs are named by a random hex identifier.

    Writes go to a hidden .part file which is renamed into place only after
    the whole stream was copied, so a failed upload is never reachable.

    The free-space check is not atomic: concurrent uploads can all pass it
    and together go below the reserved margin.
    """

    tag = "local"
    _IDENTIFIER_RE = re.compile(r"[0-9a-f]{32}")

    def __init__(self, base_path: str | Path, reserved_bytes: int = 0):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.reserved_bytes = reserved_bytes

    def free_bytes(self) -> int:
        return shutil.disk_usage(self.base_path).free

    def check_free_space(self, incoming: int) -> None:
        free = self.free_bytes()
        if free - incoming < self.reserved_bytes:
            logger.warning(
                f"Rejecting write of {incoming} bytes: {free} free, {self.reserved_bytes} reserved"
            )
            raise DiskFullError("The disk is full")

    def _path(self, identifier: str) -> Optional[Path]:
        if not self._IDENTIFIER_RE.fullmatch(identifier):
            return None
        return self.base_path / identifier

    async def store(self, source: ByteSource, size_hint: Optional[int] = None,
                    limits: TransferLimits = UPLOAD_LIMITS) -> StoredBlob:
        try:
            self.check_free_space(size_hint or 0)
        except DiskFullError:
            await source.close()
            raise

        identifier = uuid.uuid4().hex
        final_path = self.base_path / identifier
        part_path = self.base_path / f".{identifier}.part"

        try:
            handle = await aiofiles.open(part_path, "wb")
        except OSError as e:
            await source.close()
            raise StorageIOError(f"Cannot create blob: {e}") from e

        sink = _GuardedBlobWriter(handle, self, size_hint)
        pump = limits.pump(source, sink, size_hint=size_hint, label=f"upload {identifier}")
        try:
            await pump.run()
            await aiofiles.os.replace(part_path, final_path)
        except OSError as e:
            await self._discard(part_path)
            if e.errno == errno.ENOSPC:
                raise DiskFullError("The disk is full") from e
            raise StorageIOError(f"Cannot write blob: {e}") from e
        except BaseException:
            await self._discard(part_path)
            raise

        logger.debug(f"Stored blob {identifier} ({sink.written} bytes)")
        return StoredBlob(identifier=identifier, size_bytes=sink.written)

    async def open(self, identifier: str) -> ByteSource:
        path = self._path(identifier)
        if path is None:
            raise NotFoundError(f"Unknown storage identifier {identifier!r}")
        try:
            return await aiofiles.open(path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError(f"Blob {identifier} does not exist") from e
        except OSError as e:
            raise StorageIOError(f"Cannot open blob {identifier}: {e}") from e

    async def delete(self, identifier: str) -> None:
        path = self._path(identifier)
        if path is None:
            return
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageIOError(f"Cannot delete blob {identifier}: {e}") from e

    async def exists(self, identifier: str) -> bool:
        path = self._path(identifier)
        return path is not None and await aiofiles.os.path.exists(path)

    async def _discard(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Could not remove partial blob {path}: {e}")


class StorageRegistry:
    """Backends by tag, plus the tag new uploads go to.

    Built once at startup and passed to whoever needs a backend.
    """

    def __init__(self, backends: Iterable[FileStorageBackend], default_tag: str):
        self._backends = {backend.tag: backend for backend in backends}
        if default_tag not in self._backends:
            raise ValueError(f"Default storage type {default_tag!r} is not registered")
        self.default_tag = default_tag

    @property
    def default(self) -> FileStorageBackend:
        return self._backends[self.default_tag]

    @property
    def tags(self) -> list[str]:
        return sorted(self._backends)

    def get(self, tag: str) -> FileStorageBackend:
        backend = self._backends.get(tag)
        if backend is None:
            logger.error(f"Cannot find storage type {tag}")
            raise StorageError(f"Unknown storage type: {tag}")
        return backend


def build_storage_registry(storage_type: str, storage_path: str, reserved_bytes: int) -> StorageRegistry:
    if storage_type == "local":
        return StorageRegistry([LocalFileStorage(storage_path, reserved_bytes)], default_tag="local")
    raise ValueError(f"Unknown storage type: {storage_type}")
