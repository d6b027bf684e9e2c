import asyncio
from typing import Dict, List, Optional

from parley.chat.structs import StoredMessage
from .base import MessageStore


class InMemoryMessageStore(MessageStore):
    """
    Process-local store. Keeps copies, so callers mutating their own
    StoredMessage objects never change stored state behind the store's back.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._messages: Dict[str, StoredMessage] = {}

    async def upsert(self, message: StoredMessage) -> None:
        async with self._lock:
            incoming = message.snapshot()
            existing = self._messages.get(incoming.id)
            if existing is not None:
                incoming.created_at = existing.created_at
                if existing.removed_at:
                    incoming.removed_at = existing.removed_at
            self._messages[incoming.id] = incoming

    async def query_active(self, conversation_id: str) -> List[StoredMessage]:
        async with self._lock:
            active = [
                m.snapshot()
                for m in self._messages.values()
                if m.conversation_id == conversation_id and m.is_active
            ]
        return sorted(active, key=StoredMessage.sort_key)

    async def get(self, message_id: str) -> Optional[StoredMessage]:
        async with self._lock:
            stored = self._messages.get(message_id)
            return stored.snapshot() if stored else None

    def __len__(self) -> int:
        return len(self._messages)
