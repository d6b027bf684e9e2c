from abc import ABC, abstractmethod
from typing import List, Optional

from parley.chat.structs import StoredMessage


class MessageStore(ABC):
    """
    The Abstract Base Class (Contract) for message persistence.

    Implementations must honour two invariants on upsert:
    - removed_at is never cleared once set.
    - created_at is set on first insert and never overwritten.
    """

    @abstractmethod
    async def upsert(self, message: StoredMessage) -> None:
        """Insert the message, or update role/content/removed_at by id."""
        pass

    @abstractmethod
    async def query_active(self, conversation_id: str) -> List[StoredMessage]:
        """
        Active messages of a conversation, ordered by created_at then id.
        """
        pass

    @abstractmethod
    async def get(self, message_id: str) -> Optional[StoredMessage]:
        """Fetch a message by id, removed or not."""
        pass

    async def close(self) -> None:
        return None
