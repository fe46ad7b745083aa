from __future__ import annotations

"""
Append-only log of mailbox update notifications.

Every committed write, acknowledge or clear publishes one `MailboxUpdated`
record. Downstream consumers either read the log back (`list_updates`) or
subscribe to it in-process.

Publishing happens strictly after the storage commit. A call that fails never
produces a notification.
"""

import json
import logging
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import anyio
import anyio.abc

from .models import MailboxUpdated
from .storage.redis import RedisConfig, _default_config, _require_redis

logger = logging.getLogger(__name__)

UpdateSubscriber = Callable[[MailboxUpdated], None]


@runtime_checkable
class NotificationLog(Protocol):
    """
    Interface of a notification sink.

    Implementations are append-only: records are never updated or removed by
    Mailroom itself.
    """

    async def publish(self, update: MailboxUpdated) -> None: ...

    async def list_updates(
        self,
        *,
        recipient: str | None = None,
        sender: str | None = None,
        since: int | None = None,
        limit: int | None = None,
    ) -> tuple[MailboxUpdated, ...]: ...

    def subscribe(self, subscriber: UpdateSubscriber) -> None: ...

    async def aclose(self) -> None: ...


class _Subscribers:
    """Fan-out to in-process subscribers, isolating their failures."""

    def __init__(self) -> None:
        self._subscribers: list[UpdateSubscriber] = []

    def subscribe(self, subscriber: UpdateSubscriber) -> None:
        self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: UpdateSubscriber) -> None:
        if subscriber in self._subscribers:
            self._subscribers.remove(subscriber)

    def _notify(self, update: MailboxUpdated) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(update)
            except Exception:  # noqa: BLE001 - subscriber isolation boundary
                logger.warning("Update subscriber %r failed", subscriber, exc_info=True)


def _select(
    updates: list[MailboxUpdated],
    *,
    recipient: str | None,
    sender: str | None,
    since: int | None,
    limit: int | None,
) -> tuple[MailboxUpdated, ...]:
    items = [
        u
        for u in updates
        if (recipient is None or u.recipient == recipient)
        and (sender is None or u.sender == sender)
        and (since is None or u.timestamp >= since)
    ]
    if limit is not None:
        items = items[-limit:] if limit > 0 else []
    return tuple(items)


class InMemoryNotificationLog(_Subscribers):
    """
    Default notification log keeping every record in a list.

    Once closed, publishing becomes a silent no-op while reads keep working,
    so shutdown ordering between the service and the log does not matter.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock: anyio.abc.Lock = anyio.Lock()
        self._updates: list[MailboxUpdated] = []
        self._closed = False

    async def publish(self, update: MailboxUpdated) -> None:
        async with self._lock:
            if self._closed:
                return
            self._updates.append(update)
        self._notify(update)

    async def list_updates(
        self,
        *,
        recipient: str | None = None,
        sender: str | None = None,
        since: int | None = None,
        limit: int | None = None,
    ) -> tuple[MailboxUpdated, ...]:
        async with self._lock:
            updates = list(self._updates)
        return _select(updates, recipient=recipient, sender=sender, since=since, limit=limit)

    async def clear(self) -> None:
        async with self._lock:
            self._updates.clear()

    async def aclose(self) -> None:
        async with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed


class RedisStreamsNotificationLog(_Subscribers):
    """
    Notification log backed by a Redis Stream.

    Each record is one stream entry with a single `data` field holding the JSON
    form of the update, appended with `XADD` to `{prefix}:updates`.
    """

    def __init__(
        self,
        config: RedisConfig | None = None,
        *,
        client: Any | None = None,
        max_read: int = 50_000,
    ) -> None:
        super().__init__()
        self._cfg = config or _default_config()
        self._max_read = max_read
        if client is None:
            redis_async = _require_redis()
            client = redis_async.Redis.from_url(self._cfg.url, decode_responses=True)
        self._redis = client
        self._closed = False

    @property
    def stream_key(self) -> str:
        return f"{self._cfg.prefix}:updates"

    async def publish(self, update: MailboxUpdated) -> None:
        if self._closed:
            return
        payload = json.dumps(update.to_dict(), ensure_ascii=False)
        await self._redis.xadd(self.stream_key, {"data": payload})
        self._notify(update)

    async def list_updates(
        self,
        *,
        recipient: str | None = None,
        sender: str | None = None,
        since: int | None = None,
        limit: int | None = None,
    ) -> tuple[MailboxUpdated, ...]:
        entries = await self._redis.xrange(self.stream_key, min="-", max="+", count=self._max_read)
        updates: list[MailboxUpdated] = []
        for _id, fields in entries:
            raw = fields.get("data") if isinstance(fields, dict) else None
            if not isinstance(raw, str):
                continue
            try:
                updates.append(MailboxUpdated.from_dict(json.loads(raw)))
            except (ValueError, KeyError, TypeError):
                logger.warning("Skipping malformed update entry %s in %s", _id, self.stream_key)
        return _select(updates, recipient=recipient, sender=sender, since=since, limit=limit)

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._redis.aclose()

    @property
    def closed(self) -> bool:
        return self._closed
