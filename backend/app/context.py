"""Startup wiring.

build_context() turns a Settings object into the components the app runs
on. The resulting AppContext is stored on app.state and reaches routes via
dependencies; no component reads configuration or backends from globals.
"""
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from app.config import Settings
from app.database import create_tables, make_engine, make_session_factory
from app.services.expiry_sweeper import ExpirySweeper
from app.services.file_storage import StorageRegistry, build_storage_registry
from app.services.id_generator import ShortIdGenerator
from app.services.record_store import RecordStore
from app.services.stream_pump import TransferLimits
from app.services.transfers import TransferPolicy, TransferService


@dataclass
class AppContext:
    settings: Settings
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    record_store: RecordStore
    storage: StorageRegistry
    transfers: TransferService
    sweeper: ExpirySweeper

    async def close(self) -> None:
        await self.engine.dispose()


def transfer_policy(settings: Settings) -> TransferPolicy:
    return TransferPolicy(
        upload=TransferLimits(
            chunk_size=settings.UPLOAD_CHUNK_SIZE,
            min_throughput=settings.MIN_THROUGHPUT_BYTES,
        ),
        download=TransferLimits(
            chunk_size=settings.DOWNLOAD_CHUNK_SIZE,
            min_throughput=settings.MIN_THROUGHPUT_BYTES,
        ),
        max_file_size=settings.MAX_FILE_SIZE_KIB * 1024,
        banned_mime_types=settings.banned_mime_types,
        max_url_length=settings.MAX_URL_LENGTH,
    )


async def build_context(settings: Settings) -> AppContext:
    """Create tables and construct every core component."""
    engine = make_engine(settings.DATABASE_URL)
    await create_tables(engine)
    session_factory = make_session_factory(engine)

    record_store = RecordStore(session_factory, cache_size=settings.RECORD_CACHE_SIZE)
    storage = build_storage_registry(
        settings.FILE_STORAGE_TYPE,
        settings.FILE_STORAGE_PATH,
        reserved_bytes=settings.RESERVED_SPACE_MIB * 1024 * 1024,
    )
    id_generator = ShortIdGenerator(
        length=settings.SHORT_ID_LENGTH,
        max_attempts=settings.SHORT_ID_MAX_ATTEMPTS,
    )
    transfers = TransferService(record_store, storage, id_generator, transfer_policy(settings))
    sweeper = ExpirySweeper(
        record_store,
        storage,
        retention=timedelta(minutes=settings.FILE_RETENTION_MINUTES),
        interval=settings.EXPIRY_SWEEP_INTERVAL,
        batch_size=settings.EXPIRY_BATCH_SIZE,
    )
    return AppContext(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        record_store=record_store,
        storage=storage,
        transfers=transfers,
        sweeper=sweeper,
    )
