import os

import pytest
import redis

from docvault.infrastructure.redis_repository import RedisRepository

TEST_KEY_PREFIX = "docvault-test"


@pytest.fixture
def redis_client():
    """
    Redis client on a database reserved for tests, emptied around each test.

    REDIS_TEST_DB keeps these runs away from the database the services use.
    """
    client = redis.Redis(
        host=os.getenv("REDIS_HOST", "redis"),
        port=int(os.getenv("REDIS_PORT", 6379)),
        db=int(os.getenv("REDIS_TEST_DB", 15)),
        socket_connect_timeout=2,
    )

    try:
        client.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not reachable, skipping Redis integration tests")

    client.flushdb()
    yield client
    client.flushdb()
    client.close()


@pytest.fixture
def redis_repo(redis_client):
    return RedisRepository(redis_client, key_prefix=TEST_KEY_PREFIX)
