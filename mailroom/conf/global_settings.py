from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from mailroom.notifications import NotificationLog
    from mailroom.storage.base import StorageBackend


@dataclass(slots=True)
class Settings:
    """
    Default settings of a Mailroom deployment.

    Point `MAILROOM_SETTINGS_MODULE` at another `module:attribute` to replace
    them. Every value can also be overridden per service through the
    `MailboxService` constructor.

    Attributes
    ----------
    capacity:
        Maximum number of pending messages per (sender, recipient) pair.
    anonymous_sender:
        Identity recorded for anonymous writes. All anonymous writers to one
        recipient share its queue.
    key_prefix:
        Namespace of every key written to the storage backend.
    redis_url:
        Used by `RedisStorage` / `RedisStreamsNotificationLog` when they are
        built from settings.
    storage:
        Backend instance. None means a fresh `InMemoryStorage` per service.
    notifications:
        Notification log instance. None means a fresh `InMemoryNotificationLog`
        per service.
    clock:
        Nanosecond wall clock used for message timestamps. The service never
        issues a timestamp lower than the last one, so a clock stepping
        backwards holds timestamps at the last value until it catches up.
    """

    capacity: int = 10
    anonymous_sender: str = "anonymous"
    key_prefix: str = "mailroom"
    redis_url: str = "redis://localhost:6379/0"
    storage: "StorageBackend | None" = None
    notifications: "NotificationLog | None" = None
    clock: Callable[[], int] = field(default=time.time_ns)


settings = Settings()
