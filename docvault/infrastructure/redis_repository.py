"""
Redis Repository Base Class

Provides JSON storage with TTL, capped lists, a time-ordered index and
distributed locking on top of a redis-py client. Shared by the metadata
cache, the notification queues and the background task locks.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

import redis
from redis.exceptions import LockError, RedisError

logger = logging.getLogger(__name__)


class RedisRepository:
    """Base Redis repository with JSON helpers and distributed locking."""

    def __init__(self, redis_client: redis.Redis, key_prefix: str = ""):
        self.redis = redis_client
        self.key_prefix = key_prefix

    def _make_key(self, key: str) -> str:
        """Create a prefixed key for Redis storage."""
        return f"{self.key_prefix}:{key}" if self.key_prefix else key

    def set_json(self, key: str, data: Dict[str, Any], ttl: Optional[int] = None) -> bool:
        """
        Set JSON data with optional TTL.

        Args:
            key: Redis key
            data: Dictionary to store as JSON
            ttl: Time to live in seconds

        Returns:
            True if successful, False otherwise
        """
        try:
            redis_key = self._make_key(key)
            json_data = json.dumps(data)

            if ttl:
                return bool(self.redis.setex(redis_key, ttl, json_data))
            return bool(self.redis.set(redis_key, json_data))
        except (RedisError, TypeError) as e:
            logger.error(f"Error setting JSON data for key {key}: {e}")
            return False

    def get_json(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Get JSON data from Redis.

        Args:
            key: Redis key

        Returns:
            Dictionary if found and valid JSON, None otherwise
        """
        try:
            data = self.redis.get(self._make_key(key))
            if data is None:
                return None
            if isinstance(data, bytes):
                data = data.decode("utf-8")
            return json.loads(data)
        except (RedisError, json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.error(f"Error getting JSON data for key {key}: {e}")
            return None

    def delete(self, *keys: str) -> bool:
        """
        Delete keys from Redis.

        Returns:
            True if at least one key was deleted, False otherwise
        """
        if not keys:
            return False
        try:
            return self.redis.delete(*[self._make_key(key) for key in keys]) > 0
        except RedisError as e:
            logger.error(f"Error deleting keys {keys}: {e}")
            return False

    def exists(self, key: str) -> bool:
        try:
            return self.redis.exists(self._make_key(key)) > 0
        except RedisError as e:
            logger.error(f"Error checking existence of key {key}: {e}")
            return False

    # ------------------------------------------------------------------
    # Capped lists
    # ------------------------------------------------------------------

    def push_capped(self, key: str, data: Dict[str, Any], max_length: int) -> bool:
        """
        Append a JSON item to a list unless the list is already full.

        Args:
            key: List key
            data: Item to append
            max_length: Maximum list length

        Returns:
            True if appended, False if the list was full
        """
        lua_script = """
        local key = KEYS[1]
        local max_length = tonumber(ARGV[1])

        if redis.call('LLEN', key) >= max_length then
            return 0
        end
        redis.call('RPUSH', key, ARGV[2])
        return 1
        """

        redis_key = self._make_key(key)
        result = self.redis.eval(lua_script, 1, redis_key, max_length, json.dumps(data))
        return result == 1

    def list_json(self, key: str) -> List[Dict[str, Any]]:
        """Return every JSON item of a list in insertion order."""
        items = self.redis.lrange(self._make_key(key), 0, -1)
        result = []
        for item in items:
            if isinstance(item, bytes):
                item = item.decode("utf-8")
            try:
                result.append(json.loads(item))
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed list item in {key}")
        return result

    def trim_head(self, key: str, count: int) -> None:
        """Remove the first count items of a list."""
        if count <= 0:
            return
        self.redis.ltrim(self._make_key(key), count, -1)

    # ------------------------------------------------------------------
    # Time-ordered index
    # ------------------------------------------------------------------

    def index_add(self, index: str, member: str, score: float) -> None:
        self.redis.zadd(self._make_key(index), {member: score})

    def index_remove(self, index: str, member: str) -> None:
        self.redis.zrem(self._make_key(index), member)

    def index_pop_oldest(self, index: str, keep: int) -> List[str]:
        """
        Remove index members beyond the newest keep entries.

        Returns:
            The removed members, oldest first
        """
        redis_key = self._make_key(index)
        overflow = self.redis.zcard(redis_key) - keep
        if overflow <= 0:
            return []
        popped = self.redis.zpopmin(redis_key, overflow)
        return [
            member.decode("utf-8") if isinstance(member, bytes) else member
            for member, _score in popped
        ]

    @contextmanager
    def distributed_lock(self, lock_name: str, timeout: int = 10, blocking_timeout: int = 5):
        """
        Distributed lock context manager using Redis.

        Args:
            lock_name: Name of the lock
            timeout: Lock timeout in seconds
            blocking_timeout: How long to wait for lock acquisition

        Yields:
            Lock object if acquired successfully

        Raises:
            LockError: If lock cannot be acquired
        """
        lock_key = self._make_key(f"lock:{lock_name}")
        lock = self.redis.lock(lock_key, timeout=timeout, blocking_timeout=blocking_timeout)

        if not lock.acquire(blocking=True, blocking_timeout=blocking_timeout):
            raise LockError(f"Could not acquire lock: {lock_name}")
        try:
            yield lock
        finally:
            try:
                lock.release()
            except LockError:
                # Lock may have expired
                pass


class RedisConnectionManager:
    """Manages Redis connection with connection pooling."""

    def __init__(self, host: str = 'localhost', port: int = 6379, db: int = 0,
                 password: Optional[str] = None, max_connections: int = 20,
                 decode_responses: bool = False):
        self.connection_pool = redis.ConnectionPool(
            host=host,
            port=port,
            db=db,
            password=password,
            max_connections=max_connections,
            decode_responses=decode_responses,
            retry_on_timeout=True,
            socket_keepalive=True,
        )
        self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client instance with connection pooling."""
        if self._client is None:
            self._client = redis.Redis(connection_pool=self.connection_pool)
        return self._client

    def close(self):
        """Close the connection pool."""
        if self.connection_pool:
            self.connection_pool.disconnect()
