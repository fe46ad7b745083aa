from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class StorageBackend(Protocol):
    """
    Defines the interface of the key/value substrate the mailboxes live in.

    The substrate is deliberately minimal: a flat map from string keys to
    JSON-compatible values, with no ordered or sequential containers. Every
    ordering structure Mailroom needs (sender queues, rotation queues) is built
    on top of plain key lookups by `IndexedList`.

    Implementations must provide:
    1. **Point reads**: `get` and `get_many` return committed values only.
    2. **Atomic batches**: `commit` applies a whole batch of writes and deletes
       or none of them. This is what makes a mailbox call all-or-nothing.
    3. **Idempotent close**: after `aclose()` every read or commit raises
       `StorageClosed`.
    """

    async def get(self, key: str) -> Any | None:
        """
        Return the committed value stored under `key`, or None when absent.
        """
        ...

    async def get_many(self, keys: Sequence[str]) -> list[Any | None]:
        """
        Return the committed values for `keys`, in order, with None for absent keys.
        """
        ...

    async def commit(self, writes: Mapping[str, Any | None]) -> None:
        """
        Atomically apply a batch of writes.

        Parameters
        ----------
        writes : Mapping[str, Any | None]
            New value per key. A value of None deletes the key.
        """
        ...

    async def aclose(self) -> None:
        """
        Release the backend's resources. Safe to call more than once.
        """
        ...

    @property
    def closed(self) -> bool: ...
