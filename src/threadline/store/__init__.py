"""threadline persistence layer."""

from threadline.store.messages import (
    MessageFilter,
    MessageNotFoundError,
    MessageStore,
    SQLiteMessageStore,
    ThreadlineStoreError,
)

__all__ = [
    "MessageFilter",
    "MessageNotFoundError",
    "MessageStore",
    "SQLiteMessageStore",
    "ThreadlineStoreError",
]
