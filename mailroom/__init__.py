__version__ = "0.1.0"

import os

from monkay import Monkay

monkay = Monkay(
    globals(),
    settings_path=os.environ.get(
        "MAILROOM_SETTINGS_MODULE", "mailroom.conf.global_settings:settings"
    ),
)

from .exceptions import (  # noqa: E402
    DuplicateItem,
    DuplicateMessage,
    EmptyList,
    IndexCorrupted,
    ItemNotFound,
    MailboxFull,
    MailroomError,
    MessageNotFound,
    StorageClosed,
)
from .indexed_list import IndexedList  # noqa: E402
from .mailbox import Mailbox  # noqa: E402
from .models import EMPTY_READ, MailboxUpdated, Message, ReadResult  # noqa: E402
from .notifications import (  # noqa: E402
    InMemoryNotificationLog,
    NotificationLog,
    RedisStreamsNotificationLog,
)
from .service import MailboxService  # noqa: E402

__all__ = [
    "EMPTY_READ",
    "DuplicateItem",
    "DuplicateMessage",
    "EmptyList",
    "IndexCorrupted",
    "IndexedList",
    "InMemoryNotificationLog",
    "ItemNotFound",
    "Mailbox",
    "MailboxFull",
    "MailboxService",
    "MailboxUpdated",
    "MailroomError",
    "Message",
    "MessageNotFound",
    "NotificationLog",
    "ReadResult",
    "RedisStreamsNotificationLog",
    "StorageClosed",
    "monkay",
]
