from __future__ import annotations

"""
Per-recipient mailbox: message table, sender queues and rotation queue.

A mailbox owns three kinds of records inside the key/value store:

- the message table, message id -> `Message`;
- one sender queue (an `IndexedList` of message ids, oldest first) per
  effective sender, bounded by `capacity`;
- one rotation queue (an `IndexedList`) holding, for every sender with pending
  mail, exactly one id: the head of that sender's queue.

The rotation queue is what lets a recipient drain its mailbox without knowing
who wrote to it: its head is the oldest pending message of whichever sender has
waited longest for a turn. Acknowledging that message sends the sender to the
back of the rotation (if it still has mail), giving round-robin fairness.

A `Mailbox` is a short-lived view bound to one `Transaction`. It never commits;
the service commits the transaction and publishes `updates` afterwards.
"""

import logging
from collections.abc import Callable

from ._keys import MailboxKeys
from .exceptions import DuplicateMessage, IndexCorrupted, MailboxFull, MessageNotFound
from .indexed_list import IndexedList
from .models import EMPTY_READ, MailboxUpdated, Message, ReadResult
from .storage.transaction import Transaction

logger = logging.getLogger(__name__)


class Mailbox:
    """
    Message lifecycle of a single recipient.

    Parameters
    ----------
    recipient:
        Owner of the mailbox.
    txn:
        Transaction all reads and staged writes go through.
    capacity:
        Maximum number of pending messages per sender.
    anonymous_sender:
        Identity standing in for every anonymous writer. All anonymous writers
        share this one sender queue (the anonymous lane), so the recipient
        cannot tell them apart and they share one slot in the rotation.
    clock:
        Nanosecond clock used for `written_at` and notification timestamps.
    key_prefix:
        Namespace of all keys in the store.
    """

    def __init__(
        self,
        recipient: str,
        txn: Transaction,
        *,
        capacity: int,
        anonymous_sender: str,
        clock: Callable[[], int],
        key_prefix: str,
    ) -> None:
        self.recipient = recipient
        self.capacity = capacity
        self.anonymous_sender = anonymous_sender
        self.updates: list[MailboxUpdated] = []
        self._txn = txn
        self._clock = clock
        self._keys = MailboxKeys(prefix=key_prefix, recipient=recipient)

    def sender_queue(self, sender: str) -> IndexedList:
        return IndexedList(self._txn, self._keys.sender_queue(sender))

    @property
    def rotation_queue(self) -> IndexedList:
        return IndexedList(self._txn, self._keys.rotation_queue)

    async def get_message(self, msg_id: str) -> Message | None:
        """
        Look up a message by id, including acknowledged tombstones.
        """
        raw = await self._txn.get(self._keys.message(msg_id))
        if raw is None:
            return None
        return Message.from_dict(raw)

    async def write(self, sender: str, payload: bytes, *, anonymous: bool = False) -> str:
        """
        Append a message to the sender's queue and return its id.

        Raises
        ------
        MailboxFull
            If the effective sender already has `capacity` pending messages.
        DuplicateMessage
            If the derived id already exists in the message table.
        """
        if not isinstance(payload, (bytes, bytearray, memoryview)):
            raise TypeError("Message payload must be bytes.")
        effective = self.anonymous_sender if anonymous else _check_identity(sender)

        queue = self.sender_queue(effective)
        pending = await queue.size()
        if pending >= self.capacity:
            raise MailboxFull(self.recipient, effective, self.capacity)

        written_at = self._now()
        message = Message(sender=effective, payload=bytes(payload), written_at=written_at)
        msg_id = message.id
        if await self._txn.get(self._keys.message(msg_id)) is not None:
            raise DuplicateMessage(self.recipient, msg_id)

        self._txn.set(self._keys.message(msg_id), message.to_dict())
        await queue.init()
        await queue.insert_tail(msg_id)

        # The sender was idle: it joins the rotation with this message.
        if pending == 0:
            rotation = self.rotation_queue
            await rotation.init()
            await rotation.insert_tail(msg_id)

        self._emit(effective, pending + 1, written_at)
        logger.debug(
            "Staged message %s from %r to %r (%d pending)",
            msg_id,
            effective,
            self.recipient,
            pending + 1,
        )
        return msg_id

    async def read_from(self, sender: str) -> ReadResult:
        """
        Return the oldest pending message of `sender`, or `EMPTY_READ`.
        """
        queue = self.sender_queue(sender)
        if await queue.size() == 0:
            return EMPTY_READ
        return await self._read(await queue.peek_head())

    async def read_next_sender(self) -> ReadResult:
        """
        Return the message at the head of the rotation, or `EMPTY_READ`.
        """
        rotation = self.rotation_queue
        if await rotation.size() == 0:
            return EMPTY_READ
        return await self._read(await rotation.peek_head())

    async def acknowledge(self, msg_id: str) -> bool:
        """
        Mark a pending message as delivered and free its slot.

        Returns True if its sender still has pending messages.

        Raises
        ------
        MessageNotFound
            If `msg_id` is unknown to this mailbox or already acknowledged.
        """
        message = await self.get_message(msg_id) if msg_id else None
        if message is None or message.acknowledged:
            raise MessageNotFound(self.recipient, msg_id)

        queue = self.sender_queue(message.sender)
        await queue.remove(msg_id)
        self._txn.set(self._keys.message(msg_id), message.tombstone().to_dict())

        remaining = await queue.size()
        rotation = self.rotation_queue
        # Only the sender's head sits in the rotation. Acknowledging any other
        # message leaves the sender's representative untouched.
        if await rotation.contains(msg_id):
            await rotation.remove(msg_id)
            if remaining:
                await rotation.insert_tail(await queue.peek_head())

        self._emit(message.sender, remaining, self._now())
        logger.debug(
            "Acknowledged %s in mailbox of %r (%d left from %r)",
            msg_id,
            self.recipient,
            remaining,
            message.sender,
        )
        return remaining > 0

    async def clear(self, sender: str) -> int:
        """
        Acknowledge every pending message of `sender` at once.

        Returns the number of messages cleared.
        """
        queue = self.sender_queue(sender)
        if await queue.size() == 0:
            return 0

        representative = await queue.peek_head()
        cleared = 0
        while await queue.size() > 0:
            msg_id = await queue.remove_head()
            message = await self.get_message(msg_id)
            if message is None:
                raise IndexCorrupted(f"Queued message {msg_id!r} has no record.")
            self._txn.set(self._keys.message(msg_id), message.tombstone().to_dict())
            cleared += 1

        rotation = self.rotation_queue
        if await rotation.contains(representative):
            await rotation.remove(representative)

        self._emit(sender, 0, self._now())
        logger.debug("Cleared %d messages from %r in mailbox of %r", cleared, sender, self.recipient)
        return cleared

    async def count_pending(self, sender: str) -> int:
        return await self.sender_queue(sender).size()

    async def count_active_senders(self) -> int:
        return await self.rotation_queue.size()

    async def pending_ids(self, sender: str) -> tuple[str, ...]:
        return tuple([msg_id async for msg_id in self.sender_queue(sender).items()])

    async def active_senders(self) -> tuple[str, ...]:
        """
        Senders with pending mail, in the order the rotation will serve them.
        """
        senders: list[str] = []
        async for msg_id in self.rotation_queue.items():
            message = await self.get_message(msg_id)
            if message is None:
                raise IndexCorrupted(f"Rotation entry {msg_id!r} has no record.")
            senders.append(message.sender)
        return tuple(senders)

    async def check_invariants(self) -> None:
        """
        Verify the rotation against the sender queues.

        Every rotation entry must be the head of its sender's queue, each sender
        must appear at most once, and no sender queue may exceed capacity.

        Raises
        ------
        IndexCorrupted
            On the first violation found.
        """
        seen: set[str] = set()
        async for msg_id in self.rotation_queue.items():
            message = await self.get_message(msg_id)
            if message is None or message.acknowledged:
                raise IndexCorrupted(f"Rotation entry {msg_id!r} is not a pending message.")
            if message.sender in seen:
                raise IndexCorrupted(f"Sender {message.sender!r} appears twice in the rotation.")
            seen.add(message.sender)

            queue = self.sender_queue(message.sender)
            size = await queue.size()
            if size == 0 or await queue.peek_head() != msg_id:
                raise IndexCorrupted(
                    f"Rotation entry {msg_id!r} is not the head of {message.sender!r}'s queue."
                )
            if size > self.capacity:
                raise IndexCorrupted(f"Queue of {message.sender!r} holds {size} > {self.capacity}.")

    async def _read(self, msg_id: str) -> ReadResult:
        message = await self.get_message(msg_id)
        if message is None or message.acknowledged:
            raise IndexCorrupted(f"Queued message {msg_id!r} is not pending.")
        return ReadResult(
            id=msg_id,
            sender=message.sender,
            payload=message.payload,
            sent_at=message.written_at,
        )

    def _now(self) -> int:
        now = int(self._clock())
        if now <= 0:
            raise ValueError("Clock must return a positive timestamp.")
        return now

    def _emit(self, sender: str, pending: int, timestamp: int) -> None:
        self.updates.append(
            MailboxUpdated(
                sender=sender,
                recipient=self.recipient,
                pending=pending,
                timestamp=timestamp,
            )
        )


def _check_identity(identity: str) -> str:
    if not isinstance(identity, str) or not identity:
        raise ValueError("Identities must be non-empty strings.")
    return identity
