"""
Integration tests for the Redis-backed cache, notification queue and locks
using a real Redis server.
"""

import asyncio
import threading
import time
from datetime import datetime, timezone

import pytest
from redis.exceptions import LockError

from docvault.domain.file_storage.entities import FileMetadata
from docvault.infrastructure.redis_metadata_cache import RedisMetadataCache
from docvault.infrastructure.redis_notification_queue import RedisNotificationQueue


def _metadata(file_id):
    return FileMetadata(
        id=file_id,
        path=f"documents/P1/{file_id}-a.jpg",
        file_name="a.jpg",
        mime_type="image/jpeg",
        file_size=10,
        storage_type="local",
        is_sensitive=False,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


class TestRedisMetadataCacheIntegration:
    """Integration tests for RedisMetadataCache using real Redis."""

    def test_caching_cycle(self, redis_repo):
        cache = RedisMetadataCache(redis_repo, ttl_seconds=60)

        asyncio.run(cache.set(_metadata(1)))
        cached = asyncio.run(cache.get(1))

        assert cached == _metadata(1)

        asyncio.run(cache.evict(1))
        assert asyncio.run(cache.get(1)) is None

    def test_entries_expire(self, redis_repo):
        cache = RedisMetadataCache(redis_repo, ttl_seconds=1)
        asyncio.run(cache.set(_metadata(1)))

        time.sleep(1.5)

        assert asyncio.run(cache.get(1)) is None

    def test_oldest_entries_are_evicted_over_capacity(self, redis_repo):
        cache = RedisMetadataCache(redis_repo, ttl_seconds=60, max_entries=2)

        for file_id in (1, 2, 3):
            asyncio.run(cache.set(_metadata(file_id)))
            time.sleep(0.01)

        assert asyncio.run(cache.get(1)) is None
        assert asyncio.run(cache.get(2)) is not None
        assert asyncio.run(cache.get(3)) is not None

    def test_ping(self, redis_repo):
        assert asyncio.run(RedisMetadataCache(redis_repo).ping()) is True


class TestRedisNotificationQueueIntegration:
    """Integration tests for RedisNotificationQueue using real Redis."""

    def test_cap_is_enforced_under_concurrency(self, redis_repo):
        queue = RedisNotificationQueue(redis_repo, max_per_type=10)
        results = []

        def push_many(worker):
            for n in range(10):
                results.append(queue.push("failure", {"worker": worker, "n": n}))

        threads = [threading.Thread(target=push_many, args=(w,)) for w in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(queue.snapshot()["failure"]) == 10
        assert results.count(True) == 10

    def test_acknowledge_keeps_late_arrivals(self, redis_repo):
        queue = RedisNotificationQueue(redis_repo)
        queue.push("deletion", {"file_id": 1})
        queue.push("deletion", {"file_id": 2})

        snapshot = queue.snapshot()
        queue.push("deletion", {"file_id": 3})
        queue.acknowledge({kind: len(events) for kind, events in snapshot.items()})

        assert queue.snapshot()["deletion"] == [{"file_id": 3}]


class TestDistributedLockIntegration:
    def test_second_holder_is_refused(self, redis_repo):
        with redis_repo.distributed_lock("sweep", timeout=10, blocking_timeout=1):
            with pytest.raises(LockError):
                with redis_repo.distributed_lock("sweep", timeout=10, blocking_timeout=0.1):
                    pass

        with redis_repo.distributed_lock("sweep", timeout=10, blocking_timeout=1):
            pass
