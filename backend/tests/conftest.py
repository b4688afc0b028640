"""Shared fixtures: a SQLite-backed app context in tmp_path and an HTTP client."""
from datetime import datetime, timezone

import httpx
import pytest

from app.config import Settings
from app.context import build_context
from app.services.records import FileRecord


@pytest.fixture
def settings(tmp_path):
    """Settings pointing at a throwaway database and upload directory."""
    return Settings(
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        FILE_STORAGE_PATH=str(tmp_path / "uploads"),
        BASE_URL="http://testserver/",
        RESERVED_SPACE_MIB=0,
        BANNED_MIME_TYPES="application/x-msdownload",
        MAX_FILE_SIZE_KIB=64,
        FILE_RETENTION_MINUTES=60,
        EXPIRY_SWEEP_INTERVAL=60,
    )


@pytest.fixture
async def ctx(settings):
    """Fully built application context.

    Yields:
        AppContext with tables created.
    """
    context = await build_context(settings)
    yield context
    await context.close()


@pytest.fixture
def upload_dir(ctx):
    return ctx.storage.default.base_path


@pytest.fixture
async def client(ctx):
    """HTTP client talking to the app in-process (lifespan not run)."""
    from app.main import app

    app.state.ctx = ctx
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def make_file_record():
    def _make(record_id: str = "abc234", *, created_at=None, storage_identifier: str = "0" * 32,
              backend_tag: str = "local", size_bytes: int = 10) -> FileRecord:
        return FileRecord(
            id=record_id,
            created_at=created_at or datetime.now(timezone.utc),
            storage_identifier=storage_identifier,
            size_bytes=size_bytes,
            file_name="hello.txt",
            mime_type="text/plain",
            source_address="127.0.0.1",
            backend_tag=backend_tag,
        )
    return _make
