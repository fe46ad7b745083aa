from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class Message:
    """
    A message deposited in a recipient's mailbox.

    Immutable once written. The id is derived from the full content, so two
    messages only share an id if sender, payload and timestamp all match.

    Attributes
    ----------
    sender:
        Effective sender identity. For anonymous writes this is the anonymous
        sentinel, not the real caller.
    payload:
        Opaque bytes; Mailroom never interprets them.
    written_at:
        Host clock at write time, in nanoseconds. Zero marks an acknowledged
        message (a tombstone).
    """

    sender: str
    payload: bytes
    written_at: int

    @property
    def id(self) -> str:
        return message_id(self.sender, self.payload, self.written_at)

    @property
    def acknowledged(self) -> bool:
        return self.written_at == 0

    def tombstone(self) -> "Message":
        """Return the acknowledged form of this message: payload and timestamp cleared."""
        return Message(sender=self.sender, payload=b"", written_at=0)

    def to_dict(self) -> dict[str, object]:
        return {
            "sender": self.sender,
            "payload": self.payload.hex(),
            "written_at": self.written_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            sender=str(data["sender"]),
            payload=bytes.fromhex(data["payload"]),
            written_at=int(data["written_at"]),
        )


def message_id(sender: str, payload: bytes, written_at: int) -> str:
    """
    Derive the id of a message from its content.
    """
    raw = json.dumps([sender, payload.hex(), written_at], separators=(",", ":"))
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class ReadResult:
    """
    Outcome of a non-destructive read.

    Reads never fail because nothing is pending. They return `EMPTY_READ`
    instead: empty id, empty payload, zero timestamp.
    """

    id: str
    sender: str
    payload: bytes
    sent_at: int

    @property
    def is_empty(self) -> bool:
        return not self.id

    def __bool__(self) -> bool:
        return not self.is_empty


EMPTY_READ = ReadResult(id="", sender="", payload=b"", sent_at=0)


@dataclass(frozen=True, slots=True)
class MailboxUpdated:
    """
    Notification published after every committed change to a sender queue.

    Attributes
    ----------
    sender:
        Effective sender whose queue changed.
    recipient:
        Owner of the mailbox.
    pending:
        Size of the sender queue after the change.
    timestamp:
        Host clock when the change was made, in nanoseconds.
    """

    sender: str
    recipient: str
    pending: int
    timestamp: int

    def to_dict(self) -> dict[str, object]:
        return {
            "sender": self.sender,
            "recipient": self.recipient,
            "pending": self.pending,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MailboxUpdated":
        return cls(
            sender=str(data["sender"]),
            recipient=str(data["recipient"]),
            pending=int(data["pending"]),
            timestamp=int(data["timestamp"]),
        )
