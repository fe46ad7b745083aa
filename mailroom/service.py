from __future__ import annotations

"""
MailboxService: the entry point of Mailroom.

It owns:
- the registry of mailbox runtimes, one per recipient seen so far,
- the storage backend the mailboxes live in,
- the notification log updates are published to.

Every call, read or mutation, runs under the recipient's lock. A mutation runs
inside one `Transaction`: the mailbox stages its changes, the service commits
them as one batch, and only then publishes the mailbox's notifications. If
anything raises before the commit returns, the transaction is discarded and
nothing is published. A notification that fails to publish after the commit is
logged and skipped; the committed change stands.

Timestamps come from the configured clock through `_NonDecreasingClock`, so a
wall clock stepping backwards never reorders notifications.
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

import anyio
import anyio.abc

from .exceptions import DuplicateMessage, MailboxFull, StorageClosed
from .mailbox import Mailbox
from .models import ReadResult
from .notifications import InMemoryNotificationLog, NotificationLog
from .storage.base import StorageBackend
from .storage.memory import InMemoryStorage
from .storage.transaction import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _NonDecreasingClock:
    """Never issues a timestamp lower than the last one it issued."""

    __slots__ = ("_clock", "_last")

    def __init__(self, clock: Callable[[], int]) -> None:
        self._clock = clock
        self._last = 0

    def __call__(self) -> int:
        now = max(self._last, int(self._clock()))
        self._last = now
        return now


@dataclass(slots=True)
class _MailboxRuntime:
    """
    Internal registry record for one recipient.

    Notes
    -----
    - The lock gives each recipient exclusive access; calls for different
      recipients proceed independently.
    - The mailbox state itself lives in storage, not here.
    """

    recipient: str
    lock: anyio.abc.Lock = field(default_factory=anyio.Lock)
    writes: int = 0
    acknowledgements: int = 0


class MailboxService:
    """Registry of per-recipient mailboxes and the atomic boundary of every call."""

    def __init__(
        self,
        *,
        storage: StorageBackend | None = None,
        notifications: NotificationLog | None = None,
        capacity: int | None = None,
        anonymous_sender: str | None = None,
        key_prefix: str | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        from mailroom import monkay

        settings = monkay.settings

        self._storage: StorageBackend = storage or settings.storage or InMemoryStorage()
        self._notifications: NotificationLog = (
            notifications or settings.notifications or InMemoryNotificationLog()
        )
        self._capacity = capacity if capacity is not None else settings.capacity
        self._anonymous_sender = anonymous_sender or settings.anonymous_sender
        self._key_prefix = key_prefix or settings.key_prefix
        self._clock = _NonDecreasingClock(clock or settings.clock)

        if self._capacity < 1:
            raise ValueError("Mailbox capacity must be at least 1.")

        self._runtimes: dict[str, _MailboxRuntime] = {}
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def anonymous_sender(self) -> str:
        return self._anonymous_sender

    @property
    def storage(self) -> StorageBackend:
        return self._storage

    @property
    def notifications(self) -> NotificationLog:
        return self._notifications

    @property
    def recipients(self) -> tuple[str, ...]:
        return tuple(self._runtimes)

    async def write_message(
        self,
        sender: str,
        recipient: str,
        payload: bytes,
        *,
        anonymous: bool = False,
    ) -> str:
        """
        Deposit `payload` from `sender` in `recipient`'s mailbox.

        With `anonymous=True` the message is recorded under the anonymous
        sender instead, in the lane shared by all anonymous writers.

        Returns the new message id.

        Raises
        ------
        MailboxFull
            If the (effective sender, recipient) pair is at capacity.
        DuplicateMessage
            If the same content was already written within the same clock tick.
        """

        async def op(mailbox: Mailbox) -> str:
            return await mailbox.write(sender, payload, anonymous=anonymous)

        try:
            async with self._exclusive(recipient) as runtime:
                msg_id = await self._apply(runtime, op)
                runtime.writes += 1
        except (MailboxFull, DuplicateMessage) as e:
            logger.warning("Rejected write to %r: %s", recipient, e)
            raise
        return msg_id

    async def read_from(self, recipient: str, sender: str) -> ReadResult:
        """
        Peek at the oldest pending message of `sender`. Never fails on absence.
        """
        return await self._read(recipient, lambda mailbox: mailbox.read_from(sender))

    async def read_next_sender(self, recipient: str) -> ReadResult:
        """
        Peek at the message whose sender is next in the rotation. Never fails on absence.
        """
        return await self._read(recipient, lambda mailbox: mailbox.read_next_sender())

    async def acknowledge(self, recipient: str, msg_id: str) -> bool:
        """
        Mark `msg_id` delivered. Returns True if its sender has more pending messages.

        Raises
        ------
        MessageNotFound
            If `msg_id` is not pending in `recipient`'s mailbox.
        """
        async with self._exclusive(recipient) as runtime:
            more = await self._apply(runtime, lambda mailbox: mailbox.acknowledge(msg_id))
            runtime.acknowledgements += 1
        return more

    async def clear(self, recipient: str, sender: str) -> int:
        """
        Drop every pending message of `sender` from `recipient`'s mailbox.

        Returns the number of messages cleared.
        """
        async with self._exclusive(recipient) as runtime:
            return await self._apply(runtime, lambda mailbox: mailbox.clear(sender))

    async def count_pending(self, recipient: str, sender: str) -> int:
        return await self._read(recipient, lambda mailbox: mailbox.count_pending(sender))

    async def count_active_senders(self, recipient: str) -> int:
        return await self._read(recipient, lambda mailbox: mailbox.count_active_senders())

    async def pending_ids(self, recipient: str, sender: str) -> tuple[str, ...]:
        """Ids of `sender`'s pending messages, oldest first."""
        return await self._read(recipient, lambda mailbox: mailbox.pending_ids(sender))

    async def active_senders(self, recipient: str) -> tuple[str, ...]:
        """Senders with pending mail, in rotation order."""
        return await self._read(recipient, lambda mailbox: mailbox.active_senders())

    async def check_invariants(self, recipient: str) -> None:
        """
        Raise `IndexCorrupted` if the rotation disagrees with the sender queues.
        """
        await self._read(recipient, lambda mailbox: mailbox.check_invariants())

    async def release(self, recipient: str) -> bool:
        """
        Drop the registry entry of an idle mailbox.

        A recipient with any sender in the rotation still has pending mail and
        is kept. Returns True if the entry was dropped (or never existed).

        Calls already waiting on the dropped entry's lock notice the swap once
        they get the lock and move over to the recipient's current entry.
        """
        runtime = self._runtimes.get(recipient)
        if runtime is None:
            return True
        async with runtime.lock:
            if self._runtimes.get(recipient) is not runtime:
                # Released by someone else; a newer entry may already be in use.
                return recipient not in self._runtimes
            if await self._snapshot(recipient, lambda mailbox: mailbox.count_active_senders()):
                return False
            del self._runtimes[recipient]
        logger.info("Released idle mailbox of %r", recipient)
        return True

    def stats(self, recipient: str) -> dict[str, int]:
        """Per-process counters of the recipient's runtime."""
        runtime = self._runtimes.get(recipient)
        if runtime is None:
            return {"writes": 0, "acknowledgements": 0}
        return {"writes": runtime.writes, "acknowledgements": runtime.acknowledgements}

    async def aclose(self) -> None:
        """Close the storage backend and the notification log."""
        if self._closed:
            return
        self._closed = True
        await self._storage.aclose()
        await self._notifications.aclose()
        logger.info("Mailbox service closed (%d mailboxes)", len(self._runtimes))

    async def __aenter__(self) -> "MailboxService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _runtime(self, recipient: str) -> _MailboxRuntime:
        if self._closed:
            raise StorageClosed("Mailbox service is closed.")
        if not isinstance(recipient, str) or not recipient:
            raise ValueError("Identities must be non-empty strings.")
        runtime = self._runtimes.get(recipient)
        if runtime is None:
            runtime = _MailboxRuntime(recipient=recipient)
            self._runtimes[recipient] = runtime
            logger.info("Created mailbox for %r", recipient)
        return runtime

    @asynccontextmanager
    async def _exclusive(self, recipient: str) -> AsyncIterator[_MailboxRuntime]:
        """
        Hold the lock of the recipient's registered runtime.

        The entry is looked up again once the lock is held: `release` may have
        dropped it while this call was waiting, in which case the wait starts
        over on the entry that replaced it.
        """
        while True:
            runtime = self._runtime(recipient)
            async with runtime.lock:
                if self._runtimes.get(recipient) is runtime:
                    yield runtime
                    return

    def _mailbox(self, recipient: str, txn: Transaction) -> Mailbox:
        return Mailbox(
            recipient,
            txn,
            capacity=self._capacity,
            anonymous_sender=self._anonymous_sender,
            clock=self._clock,
            key_prefix=self._key_prefix,
        )

    async def _apply(
        self,
        runtime: _MailboxRuntime,
        op: Callable[[Mailbox], Awaitable[T]],
    ) -> T:
        """Run `op` in one transaction and publish its updates. Caller holds the lock."""
        txn = Transaction(self._storage)
        mailbox = self._mailbox(runtime.recipient, txn)
        try:
            result = await op(mailbox)
            await txn.commit()
        except BaseException:
            txn.rollback()
            raise

        # Committed: publish failures are logged, never raised.
        for update in mailbox.updates:
            try:
                await self._notifications.publish(update)
            except Exception:
                logger.exception(
                    "Failed to publish update of %r for %r",
                    update.sender,
                    runtime.recipient,
                )
        return result

    async def _read(self, recipient: str, op: Callable[[Mailbox], Awaitable[T]]) -> T:
        async with self._exclusive(recipient):
            return await self._snapshot(recipient, op)

    async def _snapshot(self, recipient: str, op: Callable[[Mailbox], Awaitable[T]]) -> T:
        """Run a read-only `op` against storage. Caller holds the lock."""
        txn = Transaction(self._storage)
        try:
            return await op(self._mailbox(recipient, txn))
        finally:
            txn.rollback()
