"""
Orphan Sweeper

Reconciles the catalog against the backends: rows whose object no longer
exists are removed. Objects without a row are left alone.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Mapping, Optional

from docvault.application.event_publisher import EventPublisher
from docvault.domain.events import OrphanRemovedEvent
from docvault.domain.file_storage.entities import FileMetadata, SweepReport
from docvault.domain.file_storage.repositories import FileCatalog, MetadataCache
from docvault.domain.file_storage.storage_provider import IStorageProvider

logger = logging.getLogger(__name__)

_PRESENT = "present"
_MISSING = "missing"
_UNKNOWN_BACKEND = "unknown_backend"
_PROBE_FAILED = "probe_failed"


class OrphanSweeper:
    """
    Pages through the catalog and drops rows whose backend object is gone.

    Rows pointing at a storage_type with no registered provider are never
    deleted; neither are rows whose probe raised. Only one run executes at
    a time per process.
    """

    def __init__(
        self,
        catalog: FileCatalog,
        cache: MetadataCache,
        providers: Mapping[str, IStorageProvider],
        batch_size: int = 100,
        event_publisher: Optional[EventPublisher] = None,
        metrics=None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.catalog = catalog
        self.cache = cache
        self.providers = providers
        self.batch_size = batch_size
        self.event_publisher = event_publisher
        self.metrics = metrics
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self) -> SweepReport:
        """
        Execute one full reconciliation pass.

        Returns:
            SweepReport with counts; skipped=True if a run was already active
        """
        if self._running:
            logger.warning("Orphan sweep already running, skipping")
            return SweepReport(skipped=True)

        self._running = True
        try:
            return await self._sweep()
        finally:
            self._running = False

    async def _sweep(self) -> SweepReport:
        report = SweepReport()
        after_id = 0

        logger.info(f"Starting orphan sweep (batch size {self.batch_size})")

        while True:
            rows = await self.catalog.list_batch(after_id, self.batch_size)
            if not rows:
                break
            after_id = rows[-1].id
            report.scanned += len(rows)

            outcomes = await asyncio.gather(*(self._probe(row) for row in rows))

            for row, outcome in zip(rows, outcomes):
                if outcome == _UNKNOWN_BACKEND:
                    report.skipped_unknown_backend += 1
                elif outcome == _PROBE_FAILED:
                    report.probe_failures += 1
                elif outcome == _MISSING:
                    if await self._remove(row):
                        report.removed += 1
                        report.removed_ids.append(row.id)

            if len(rows) < self.batch_size:
                break

        if self.metrics is not None and report.removed:
            self.metrics.record_orphans_removed(report.removed)

        logger.info(
            f"Orphan sweep complete: scanned={report.scanned}, removed={report.removed}, "
            f"unknown_backend={report.skipped_unknown_backend}, "
            f"probe_failures={report.probe_failures}"
        )
        return report

    async def _probe(self, row: FileMetadata) -> str:
        provider = self.providers.get(row.storage_type)
        if provider is None:
            logger.warning(
                f"Skipping file {row.id}: no provider registered for storage type "
                f"'{row.storage_type}'"
            )
            return _UNKNOWN_BACKEND

        try:
            exists = await provider.check_exists(row.path)
        except Exception as e:
            logger.error(f"Existence probe failed for file {row.id} ({row.storage_type}): {e}")
            return _PROBE_FAILED

        return _PRESENT if exists else _MISSING

    async def _remove(self, row: FileMetadata) -> bool:
        try:
            removed = await self.catalog.delete(row.id)
        except Exception as e:
            logger.error(f"Failed to remove orphaned row {row.id}: {e}")
            return False

        await self.cache.evict(row.id)

        if removed:
            logger.info(f"Removed orphaned row {row.id} ({row.storage_type}:{row.path})")
            if self.event_publisher is not None:
                self.event_publisher.publish(OrphanRemovedEvent(
                    aggregate_id=str(row.id),
                    occurred_at=datetime.now(timezone.utc),
                    correlation_id=None,
                    path=row.path,
                    storage_type=row.storage_type,
                ))
        return removed
