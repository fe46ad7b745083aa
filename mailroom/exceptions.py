from __future__ import annotations


class MailroomError(Exception):
    """Base exception for all Mailroom errors."""


class MailboxFull(MailroomError):
    """
    Raised when a sender already has `capacity` pending messages for a recipient.

    The write is rejected as a whole. It becomes possible again once the
    recipient acknowledges (or clears) messages from that sender.
    """

    def __init__(self, recipient: str, sender: str, capacity: int) -> None:
        super().__init__(
            f"Mailbox of {recipient!r} is full for sender {sender!r} ({capacity} pending)."
        )
        self.recipient = recipient
        self.sender = sender
        self.capacity = capacity


class MessageNotFound(MailroomError):
    """
    Raised when acknowledging an id that is unknown to the recipient's mailbox
    or that was already acknowledged.
    """

    def __init__(self, recipient: str, msg_id: str) -> None:
        super().__init__(f"No pending message {msg_id!r} in mailbox of {recipient!r}.")
        self.recipient = recipient
        self.msg_id = msg_id


class DuplicateMessage(MailroomError):
    """
    Raised when a write derives a message id that already exists in the
    recipient's message table.

    Ids are derived from (sender, payload, timestamp), so this only happens when
    the same sender writes the same payload twice within one clock tick.
    """

    def __init__(self, recipient: str, msg_id: str) -> None:
        super().__init__(f"Message {msg_id!r} already exists in mailbox of {recipient!r}.")
        self.recipient = recipient
        self.msg_id = msg_id


class IndexCorrupted(MailroomError):
    """
    Base class for violations of the linked-list index contracts.

    These never surface while the mailbox honours the list preconditions, so
    seeing one means a bug (or a store modified behind our back).
    """


class DuplicateItem(IndexCorrupted):
    """Raised when inserting an item that already has a node in the list."""


class EmptyList(IndexCorrupted):
    """Raised when peeking or removing from an empty list."""


class ItemNotFound(IndexCorrupted):
    """Raised when removing an item that has no node in the list."""


class StorageClosed(MailroomError):
    """
    Raised when reading from or committing to a storage backend that has been
    closed.
    """
