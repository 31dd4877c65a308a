"""
Notification Batcher

Accumulates sensitive-access, failure and deletion events and sends one
digest per period covering all three.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from docvault.application.retry_policy import RetryPolicy
from docvault.domain.errors import DomainError, NotificationDeliveryError
from docvault.domain.file_storage.repositories import (
    NOTIFICATION_KINDS,
    NotificationQueue,
    NotificationSender,
)

logger = logging.getLogger(__name__)

DIGEST_SUBJECT = "Daily File Upload Notification Summary"
DIGEST_TEMPLATE = "daily-notification-summary"


class NotificationBatcher:
    """
    Collects notification events and emits a single daily digest.

    Enqueueing never raises: a notification problem must not fail the
    storage operation that produced the event. Queue calls run in a
    worker thread, off the event loop. Queues are cleared only after the
    digest has been delivered.
    """

    def __init__(
        self,
        queue: NotificationQueue,
        sender: NotificationSender,
        app_name: str = "DocVault",
        retry_policy: Optional[RetryPolicy] = None,
        metrics=None,
    ):
        self.queue = queue
        self.sender = sender
        self.app_name = app_name
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, min_backoff=1.0, max_backoff=5.0)
        self.metrics = metrics

    async def enqueue_sensitive(self, event: Dict[str, Any]) -> bool:
        return await self._enqueue("sensitive", event)

    async def enqueue_failure(self, event: Dict[str, Any]) -> bool:
        return await self._enqueue("failure", event)

    async def enqueue_deletion(self, event: Dict[str, Any]) -> bool:
        return await self._enqueue("deletion", event)

    async def _enqueue(self, kind: str, event: Dict[str, Any]) -> bool:
        entry = dict(event)
        entry.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        try:
            stored = await asyncio.to_thread(self.queue.push, kind, entry)
        except Exception as e:
            logger.error(f"Failed to queue {kind} notification: {e}")
            stored = False
        if not stored and self.metrics is not None:
            self.metrics.record_dropped_notification(kind)
        return stored

    async def send_daily_summary(self) -> bool:
        """
        Send the digest if any queue holds events.

        Returns:
            True if a digest was sent, False if every queue was empty

        Raises:
            NotificationDeliveryError: If the digest could not be delivered;
                the queues are left intact for the next run
        """
        snapshot = await asyncio.to_thread(self.queue.snapshot)
        counts = {kind: len(snapshot.get(kind, [])) for kind in NOTIFICATION_KINDS}

        if not any(counts.values()):
            logger.info("No notifications queued, skipping daily summary")
            return False

        context = {
            "app_name": self.app_name,
            "date": datetime.now(timezone.utc).date().isoformat(),
            "sensitive_files": snapshot.get("sensitive", []),
            "failed_uploads": snapshot.get("failure", []),
            "deleted_files": snapshot.get("deletion", []),
            "has_sensitive": counts["sensitive"] > 0,
            "has_failures": counts["failure"] > 0,
            "has_deletions": counts["deletion"] > 0,
        }

        try:
            await self.retry_policy.run(
                lambda: self.sender.send(DIGEST_SUBJECT, DIGEST_TEMPLATE, context),
                operation="send_digest",
                backend=type(self.sender).__name__,
            )
        except DomainError as e:
            logger.error(f"Failed to send daily notification summary: {e}")
            raise NotificationDeliveryError(
                f"Failed to send daily notification summary: {e.message}", original_error=e
            ) from e

        await asyncio.to_thread(self.queue.acknowledge, counts)
        logger.info(
            f"Sent daily notification summary: sensitive={counts['sensitive']}, "
            f"failures={counts['failure']}, deletions={counts['deletion']}"
        )
        return True
