"""Conversation store, SQLite snapshots, and shared-link storage."""

from store.conversations import ConversationStore
from store.database import get_db, init_database
from store.shared_links import LinkStorage

__all__ = [
    "ConversationStore",
    "LinkStorage",
    "get_db",
    "init_database",
]
