"""Tests for the local storage backend and the backend registry."""
import re

import pytest

from app.services.errors import DiskFullError, NotFoundError, StorageError, TransferInterruptedError
from app.services.file_storage import LocalFileStorage, StorageRegistry, build_storage_registry
from app.services.stream_pump import TransferLimits
from helpers import BytesSource, HangingSource, blob_files


@pytest.fixture
def storage(tmp_path):
    return LocalFileStorage(tmp_path / "blobs")


async def _read_all(handle) -> bytes:
    try:
        return await handle.read()
    finally:
        await handle.close()


async def test_store_and_open_round_trip(storage):
    payload = b"hello-test" * 1000
    source = BytesSource(payload)

    blob = await storage.store(source, size_hint=len(payload))

    assert re.fullmatch(r"[0-9a-f]{32}", blob.identifier)
    assert blob.size_bytes == len(payload)
    assert source.closed
    assert blob_files(storage.base_path) == [blob.identifier]
    assert await _read_all(await storage.open(blob.identifier)) == payload


async def test_identifiers_are_never_reused(storage):
    first = await storage.store(BytesSource(b"one"))
    second = await storage.store(BytesSource(b"two"))

    assert first.identifier != second.identifier


async def test_open_unknown_identifier(storage):
    with pytest.raises(NotFoundError):
        await storage.open("f" * 32)


async def test_identifier_cannot_escape_storage_root(storage):
    with pytest.raises(NotFoundError):
        await storage.open("../../etc/passwd")
    # Deleting nonsense is a no-op rather than a path traversal
    await storage.delete("../../etc/passwd")


async def test_delete_is_idempotent(storage):
    blob = await storage.store(BytesSource(b"bye"))

    await storage.delete(blob.identifier)
    await storage.delete(blob.identifier)

    assert not await storage.exists(blob.identifier)
    with pytest.raises(NotFoundError):
        await storage.open(blob.identifier)


async def test_rejects_upload_that_would_eat_reserved_space(storage, monkeypatch):
    monkeypatch.setattr(storage, "free_bytes", lambda: 1000)
    storage.reserved_bytes = 600
    source = BytesSource(b"x" * 500)

    with pytest.raises(DiskFullError):
        await storage.store(source, size_hint=500)

    assert source.closed
    assert source.read_sizes == []
    assert blob_files(storage.base_path) == []


async def test_rechecks_space_when_stream_outgrows_hint(storage, monkeypatch):
    monkeypatch.setattr(storage, "free_bytes", lambda: 100)
    source = BytesSource(b"y" * 1000)
    limits = TransferLimits(chunk_size=200, min_throughput=1)

    with pytest.raises(DiskFullError):
        await storage.store(source, size_hint=None, limits=limits)

    assert source.closed
    assert blob_files(storage.base_path) == []


async def test_stalled_upload_leaves_no_partial_blob(storage):
    limits = TransferLimits(chunk_size=4, min_throughput=1000)

    with pytest.raises(TransferInterruptedError):
        await storage.store(HangingSource(b"part"), limits=limits)

    assert blob_files(storage.base_path) == []


def test_registry_lookup(storage):
    registry = StorageRegistry([storage], default_tag="local")

    assert registry.default is storage
    assert registry.get("local") is storage
    assert registry.tags == ["local"]
    with pytest.raises(StorageError):
        registry.get("s3")


def test_registry_requires_registered_default(storage):
    with pytest.raises(ValueError):
        StorageRegistry([storage], default_tag="azure_blob")


def test_build_registry_rejects_unknown_type(tmp_path):
    with pytest.raises(ValueError):
        build_storage_registry("azure_blob", str(tmp_path), reserved_bytes=0)
