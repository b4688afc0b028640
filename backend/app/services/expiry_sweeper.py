"""Background expiry sweeper.

Every `interval` seconds, finds file records older than the retention window,
deletes their blobs and then their metadata. Runs as an asyncio task within
the FastAPI process, next to request handling.

Failures are logged and never propagated. If a blob can't be deleted the
record is kept, so the next tick retries instead of orphaning the blob.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.services.errors import DropError
from app.services.file_storage import StorageRegistry
from app.services.record_store import RecordStore
from app.services.records import FileRecord

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    expired: int = 0
    removed: int = 0
    failed: list[str] = field(default_factory=list)


class ExpirySweeper:
    def __init__(
        self,
        record_store: RecordStore,
        registry: StorageRegistry,
        retention: timedelta,
        interval: float = 60.0,
        batch_size: int = 500,
    ):
        self.record_store = record_store
        self.registry = registry
        self.retention = retention
        self.interval = interval
        self.batch_size = batch_size
        if retention.total_seconds() < interval:
            logger.warning(
                f"Retention ({retention}) is shorter than the sweep interval ({interval}s); "
                "fresh links may expire before clients resolve them"
            )

    async def sweep_once(self, now: Optional[datetime] = None) -> SweepReport:
        """Remove every file record created before now - retention.

        Records are fetched `batch_size` at a time. Paging continues past
        records kept after a failure, so they never block newer ones.
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.retention
        report = SweepReport()
        cursor = None
        while True:
            try:
                expired = await self.record_store.list_expired_files(
                    cutoff, limit=self.batch_size, after=cursor
                )
            except DropError as e:
                logger.error(f"Failed to clean files: {e}")
                break

            report.expired += len(expired)
            for record in expired:
                await self._expire(record, report)

            if len(expired) < self.batch_size:
                break
            cursor = (expired[-1].created_at, expired[-1].id)

        if report.removed:
            logger.info(f"Cleaned {report.removed} file(s)")
        return report

    async def _expire(self, record: FileRecord, report: SweepReport) -> None:
        try:
            await self.registry.get(record.backend_tag).delete(record.storage_identifier)
        except DropError as e:
            logger.warning(f"Keeping record {record.id}: blob {record.storage_identifier} not deleted: {e}")
            report.failed.append(record.id)
            return
        try:
            await self.record_store.delete(record)
        except DropError as e:
            logger.warning(f"Failed to remove record {record.id}: {e}")
            report.failed.append(record.id)
            return
        report.removed += 1
        logger.info(f"Expired file {record.id}: {record.file_name} - {record.size_bytes / 1024 / 1024:.1f}M")

    async def run_forever(self):
        """Main sweep loop. Sleeps `interval` seconds between ticks."""
        logger.info(f"Expiry sweeper started (retention={self.retention}, interval={self.interval}s)")
        while True:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Expiry sweep error: {e}")
            await asyncio.sleep(self.interval)
