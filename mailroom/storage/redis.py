from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any

import anyio
import anyio.abc

from mailroom.exceptions import StorageClosed

from .metrics import StorageMetricsMixin


@dataclass(slots=True)
class RedisConfig:
    """
    Connection settings shared by the Redis storage backend and the Redis
    Streams notification log.

    Attributes:
        url (str): The Redis connection URL (e.g., redis://localhost:6379/0).
        prefix (str): Namespace for keys that the backend itself owns, such as
            the notification stream. Mailbox keys already carry the key prefix
            from the settings.
    """

    url: str = "redis://localhost:6379/0"
    prefix: str = "mailroom"


def _default_config() -> RedisConfig:
    """Build the connection settings from `mailroom.monkay.settings`."""
    from mailroom import monkay

    settings = monkay.settings
    return RedisConfig(url=settings.redis_url, prefix=settings.key_prefix)


def _require_redis() -> Any:
    """
    Lazily import the Redis asyncio client library.

    Keeps `redis` an optional dependency: it is only imported when a Redis
    backend is actually instantiated.

    Raises:
        RuntimeError: If the `redis` package is not installed in the environment.
    """
    try:
        import redis.asyncio as redis_async  # type: ignore
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "Redis backend requires optional dependency 'redis'. "
            "Install with: pip install mailroom[redis] or pip install redis"
        ) from e
    return redis_async


class RedisStorage(StorageMetricsMixin):
    """
    A storage backend keeping every mailbox key as a plain Redis string.

    Architecture:
        - **Storage**: each value is JSON-encoded and stored with `SET`; reads
          use `GET` / `MGET`.
        - **Atomicity**: a batch is sent as one `MULTI/EXEC` pipeline, so Redis
          applies all of its `SET` and `DEL` commands or none of them.
        - **Isolation**: mutating calls are already serialized per recipient by
          the mailbox service; the backend does not need `WATCH`.
    """

    def __init__(self, config: RedisConfig | None = None, *, client: Any | None = None) -> None:
        """
        Args:
            config (RedisConfig | None, optional): Connection configuration.
            client (Any | None, optional): An existing `redis.asyncio.Redis`
                client. When given, `config.url` is ignored.
        """
        super().__init__()
        self._cfg = config or _default_config()
        self._lock: anyio.abc.Lock = anyio.Lock()

        if client is None:
            redis_async = _require_redis()
            # decode_responses=True so JSON payloads come back as str.
            client = redis_async.Redis.from_url(self._cfg.url, decode_responses=True)
        self._redis = client
        self._closed = False

    @property
    def client(self) -> Any:
        return self._redis

    async def get(self, key: str) -> Any | None:
        self._ensure_open()
        raw = await self._redis.get(key)
        self._metrics_on_read()
        return _decode(raw)

    async def get_many(self, keys: Sequence[str]) -> list[Any | None]:
        self._ensure_open()
        if not keys:
            return []
        raws = await self._redis.mget(list(keys))
        self._metrics_on_read(len(keys))
        return [_decode(raw) for raw in raws]

    async def commit(self, writes: Mapping[str, Any | None]) -> None:
        self._ensure_open()
        if not writes:
            return

        written = deleted = 0
        try:
            # Encode everything first so a serialization error aborts before
            # the pipeline is sent.
            encoded = {
                key: (None if value is None else json.dumps(value, ensure_ascii=False))
                for key, value in writes.items()
            }
            async with self._lock:
                async with self._redis.pipeline(transaction=True) as pipe:
                    for key, raw in encoded.items():
                        if raw is None:
                            pipe.delete(key)
                            deleted += 1
                        else:
                            pipe.set(key, raw)
                            written += 1
                    await pipe.execute()
        except Exception:
            self._metrics_on_commit_error()
            raise

        self._metrics_on_commit(written=written, deleted=deleted)

    async def aclose(self) -> None:
        async with self._lock:
            if self._closed:
                return
            self._closed = True
        await self._redis.aclose()

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageClosed("Storage backend is closed.")


def _decode(raw: Any) -> Any | None:
    if raw is None:
        return None
    return json.loads(raw)
