"""
Cleanup Task

Celery beat task for periodic reconciliation of the metadata catalog
against the storage backends.
"""

import asyncio
import logging

from redis.exceptions import LockError

from docvault.application.file_upload_service import FileUploadService
from docvault.celery_app import celery_app, get_container
from docvault.infrastructure.redis_repository import RedisRepository

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "cleanup_orphaned_files"
SWEEP_LOCK_TIMEOUT = 3600


@celery_app.task(bind=True, name="docvault.cleanup_orphaned_files")
def cleanup_orphaned_files(self):
    """
    Periodic task that removes catalog rows whose object no longer exists.

    Holds a Redis lock for the duration of the sweep so two workers never
    reconcile concurrently.

    Returns:
        dict: Sweep statistics with counts and errors
    """
    logger.info("Starting orphan cleanup task")

    cleanup_stats = {
        "scanned": 0,
        "removed": 0,
        "skipped_unknown_backend": 0,
        "probe_failures": 0,
        "removed_ids": [],
        "skipped": False,
        "errors": [],
    }

    try:
        container = get_container()
        service = container.resolve(FileUploadService)
        redis_repo = container.resolve(RedisRepository)

        try:
            with redis_repo.distributed_lock(SWEEP_LOCK_NAME, timeout=SWEEP_LOCK_TIMEOUT, blocking_timeout=1):
                report = asyncio.run(service.cleanup_orphaned_files())
        except LockError:
            logger.info("Orphan cleanup already running on another worker, skipping")
            cleanup_stats["skipped"] = True
            return cleanup_stats

        cleanup_stats.update(report.to_dict())

        logger.info(
            f"Cleanup completed - Scanned: {cleanup_stats['scanned']}, "
            f"Removed: {cleanup_stats['removed']}, "
            f"Unknown backend: {cleanup_stats['skipped_unknown_backend']}, "
            f"Probe failures: {cleanup_stats['probe_failures']}"
        )
        return cleanup_stats

    except Exception as e:
        error_msg = f"Cleanup task failed: {e}"
        logger.error(error_msg, exc_info=True)
        cleanup_stats["errors"].append(error_msg)
        return cleanup_stats
