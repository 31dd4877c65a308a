"""
Redis Notification Queue

Accumulates notification events in one capped Redis list per kind so
web processes and the worker that sends the digest see the same queues.
"""

import logging
from typing import Any, Dict, List, Mapping

from docvault.domain.file_storage.repositories import NOTIFICATION_KINDS, NotificationQueue

logger = logging.getLogger(__name__)


class RedisNotificationQueue(NotificationQueue):
    """
    Redis list backed implementation of NotificationQueue.

    Acknowledging trims only the items that were read, so events pushed
    while a digest is being sent stay queued for the next run.
    """

    def __init__(self, redis_repository, max_per_type: int = 100):
        self.redis_repo = redis_repository
        self.max_per_type = max_per_type

    @staticmethod
    def _make_key(kind: str) -> str:
        if kind not in NOTIFICATION_KINDS:
            raise ValueError(f"Unknown notification kind: {kind}")
        return f"notifications:{kind}"

    def push(self, kind: str, event: Dict[str, Any]) -> bool:
        stored = self.redis_repo.push_capped(self._make_key(kind), event, self.max_per_type)
        if not stored:
            logger.warning(f"Notification queue '{kind}' is full ({self.max_per_type}), dropping event")
        return stored

    def snapshot(self) -> Dict[str, List[Dict[str, Any]]]:
        return {kind: self.redis_repo.list_json(self._make_key(kind)) for kind in NOTIFICATION_KINDS}

    def acknowledge(self, counts: Mapping[str, int]) -> None:
        for kind, count in counts.items():
            self.redis_repo.trim_head(self._make_key(kind), count)
