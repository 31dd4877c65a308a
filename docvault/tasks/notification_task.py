"""
Notification Task

Celery beat task sending the daily digest of sensitive-file access,
upload failures and deletions.
"""

import asyncio
import logging

from redis.exceptions import LockError

from docvault.application.file_upload_service import FileUploadService
from docvault.celery_app import celery_app, get_container
from docvault.domain.errors import NotificationDeliveryError
from docvault.infrastructure.redis_repository import RedisRepository

logger = logging.getLogger(__name__)

DIGEST_LOCK_NAME = "daily_notification_summary"
DIGEST_LOCK_TIMEOUT = 600


@celery_app.task(bind=True, name="docvault.send_daily_notification_summary")
def send_daily_notification_summary(self):
    """
    Send the daily notification digest.

    Queues survive a failed send and are included in the next run.

    Returns:
        dict: {"sent": bool, "skipped": bool, "errors": [...]}
    """
    logger.info("Starting daily notification summary task")

    result = {"sent": False, "skipped": False, "errors": []}

    try:
        container = get_container()
        service = container.resolve(FileUploadService)
        redis_repo = container.resolve(RedisRepository)

        try:
            with redis_repo.distributed_lock(DIGEST_LOCK_NAME, timeout=DIGEST_LOCK_TIMEOUT, blocking_timeout=1):
                result["sent"] = asyncio.run(service.send_daily_notification_summary())
        except LockError:
            logger.info("Daily summary already being sent by another worker, skipping")
            result["skipped"] = True

    except NotificationDeliveryError as e:
        logger.error(f"Daily notification summary not delivered: {e}")
        result["errors"].append(str(e))
    except Exception as e:
        error_msg = f"Notification task failed: {e}"
        logger.error(error_msg, exc_info=True)
        result["errors"].append(error_msg)

    return result
