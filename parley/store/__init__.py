from .base import MessageStore
from .memory import InMemoryMessageStore
from .sqlite import SQLiteMessageStore

__all__ = ["MessageStore", "InMemoryMessageStore", "SQLiteMessageStore"]
