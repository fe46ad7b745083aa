import os
import uuid

import pytest

redis_async = pytest.importorskip("redis.asyncio")

from mailroom.storage.redis import RedisConfig  # noqa: E402


def _redis_url() -> str:
    return os.environ.get("MAILROOM_REDIS_URL", "redis://localhost:6379/15")


async def _redis_available(url: str) -> bool:
    client = redis_async.Redis.from_url(url, decode_responses=True)
    try:
        await client.ping()
        return True
    except Exception:
        return False
    finally:
        await client.aclose()


@pytest.fixture()
async def redis_config():
    url = _redis_url()
    if not await _redis_available(url):
        pytest.skip(f"Redis not available at {url}")

    config = RedisConfig(url=url, prefix=f"mailroom-test-{uuid.uuid4().hex}")
    yield config

    client = redis_async.Redis.from_url(url, decode_responses=True)
    try:
        keys = [key async for key in client.scan_iter(match=f"{config.prefix}*")]
        if keys:
            await client.delete(*keys)
    finally:
        await client.aclose()
