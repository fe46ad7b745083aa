from __future__ import annotations

"""
Key layout of a mailbox inside the flat key/value store.

Not part of the public API. Every key a mailbox touches is built here:

- `{prefix}:{recipient}:msg:{id}`          message record
- `{prefix}:{recipient}:q:{sender_hash}`   namespace of one sender queue
- `{prefix}:{recipient}:rot`               namespace of the rotation queue

Recipients are percent-quoted so a `:` inside an identity cannot forge another
mailbox's keys. Senders are hashed: the queue key only needs to be distinct per
sender, and a fixed-width digest keeps keys bounded.
"""

import hashlib
from dataclasses import dataclass
from urllib.parse import quote


def sender_hash(sender: str) -> str:
    return hashlib.sha256(sender.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class MailboxKeys:
    prefix: str
    recipient: str

    @property
    def root(self) -> str:
        return f"{self.prefix}:{quote(self.recipient, safe='')}"

    def message(self, msg_id: str) -> str:
        return f"{self.root}:msg:{msg_id}"

    def sender_queue(self, sender: str) -> str:
        return f"{self.root}:q:{sender_hash(sender)}"

    @property
    def rotation_queue(self) -> str:
        return f"{self.root}:rot"
