from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from typing import Any

import anyio
import anyio.abc

from mailroom.exceptions import StorageClosed

from .metrics import StorageMetricsMixin


class InMemoryStorage(StorageMetricsMixin):
    """
    A default, ephemeral storage backend keeping every key in a Python dict.

    This is the reference implementation of the storage protocol and the
    backend used when no other is configured.

    Purpose
    -------
    - **Development & Testing**: setup-free, deterministic storage for unit tests.
    - **Reference**: demonstrates the expected semantics (committed reads,
      atomic batches, close behaviour).
    - **Concurrency Safety**: commits and reads are guarded by an `anyio.Lock`,
      so a reader never observes half of a batch.

    Values are deep-copied on the way in and out. Callers can mutate what they
    read without touching committed state, which mirrors a real remote store.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock: anyio.abc.Lock = anyio.Lock()
        self._data: dict[str, Any] = {}
        self._closed = False

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            self._ensure_open()
            self._metrics_on_read()
            return copy.deepcopy(self._data.get(key))

    async def get_many(self, keys: Sequence[str]) -> list[Any | None]:
        async with self._lock:
            self._ensure_open()
            self._metrics_on_read(len(keys))
            return [copy.deepcopy(self._data.get(key)) for key in keys]

    async def commit(self, writes: Mapping[str, Any | None]) -> None:
        """
        Apply the whole batch under the lock.

        The batch is validated and copied before the first key is touched, so
        the dict is either fully updated or left alone.
        """
        async with self._lock:
            try:
                self._ensure_open()
                staged = {key: copy.deepcopy(value) for key, value in writes.items()}
            except Exception:
                self._metrics_on_commit_error()
                raise

            written = deleted = 0
            for key, value in staged.items():
                if value is None:
                    if self._data.pop(key, None) is not None:
                        deleted += 1
                else:
                    self._data[key] = value
                    written += 1
            self._metrics_on_commit(written=written, deleted=deleted)

    def keys(self, prefix: str = "") -> list[str]:
        """
        Return the committed keys starting with `prefix`, sorted.

        Useful for inspection in tests; not part of the storage protocol.
        """
        return sorted(key for key in self._data if key.startswith(prefix))

    async def clear(self) -> None:
        """
        Drop every key. Primarily useful to reset state between test cases.
        """
        async with self._lock:
            self._data.clear()

    async def aclose(self) -> None:
        async with self._lock:
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise StorageClosed("Storage backend is closed.")
