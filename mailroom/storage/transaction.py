from __future__ import annotations

"""
Read-through write buffer over a storage backend.

Mailbox operations are multi-step: a single write touches the message table,
the sender queue nodes and size, and possibly the rotation queue. A
`Transaction` collects all of those changes in memory and hands them to the
backend in one atomic `commit`. Reads inside the transaction see its own
pending writes first, then fall back to committed state.

Dropping a transaction without committing is the rollback: nothing reaches the
backend.
"""

import copy
import logging
from collections.abc import Mapping
from typing import Any

from .base import StorageBackend

logger = logging.getLogger(__name__)

_MISSING = object()


class Transaction:
    """
    A single all-or-nothing unit of work against a `StorageBackend`.

    Notes
    -----
    - Values read from the backend are cached, so repeated lookups of the same
      key inside one call cost one backend round trip.
    - A transaction can be committed at most once. Further use raises
      `RuntimeError`.
    """

    __slots__ = ("_backend", "_cache", "_writes", "_done")

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        self._cache: dict[str, Any] = {}
        self._writes: dict[str, Any] = {}
        self._done = False

    async def get(self, key: str) -> Any | None:
        self._ensure_active()
        value = self._writes.get(key, _MISSING)
        if value is not _MISSING:
            return copy.deepcopy(value)

        value = self._cache.get(key, _MISSING)
        if value is _MISSING:
            value = await self._backend.get(key)
            self._cache[key] = value
        return copy.deepcopy(value)

    def set(self, key: str, value: Any) -> None:
        if value is None:
            raise ValueError("Use delete() to remove a key.")
        self._ensure_active()
        self._writes[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._ensure_active()
        self._writes[key] = None

    @property
    def pending_writes(self) -> Mapping[str, Any | None]:
        return dict(self._writes)

    async def commit(self) -> None:
        """
        Send every staged write to the backend as one batch.
        """
        self._ensure_active()
        self._done = True
        if not self._writes:
            return
        logger.debug("Committing %d staged keys", len(self._writes))
        await self._backend.commit(self._writes)

    def rollback(self) -> None:
        """
        Discard every staged write. Safe to call after commit.
        """
        if self._writes and not self._done:
            logger.debug("Discarding %d staged keys", len(self._writes))
        self._writes.clear()
        self._cache.clear()
        self._done = True

    def _ensure_active(self) -> None:
        if self._done:
            raise RuntimeError("Transaction is already finished.")
