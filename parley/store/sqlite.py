"""SQLite-backed message store."""

import logging
from pathlib import Path
from typing import List, Optional, Union

import aiosqlite

from parley.chat.structs import StoredMessage
from parley.exceptions.store import StoreError
from .base import MessageStore

logger = logging.getLogger("SQLiteMessageStore")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at REAL NOT NULL,
    removed_at REAL NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages (conversation_id, removed_at, created_at);
"""

# removed_at only ever moves from 0 to a timestamp; created_at is never touched.
_UPSERT = """
INSERT INTO messages (id, conversation_id, role, content, created_at, removed_at)
VALUES (?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    role = excluded.role,
    content = excluded.content,
    removed_at = CASE
        WHEN messages.removed_at > 0 THEN messages.removed_at
        ELSE excluded.removed_at
    END
"""

_COLUMNS = "id, conversation_id, role, content, created_at, removed_at"


class SQLiteMessageStore(MessageStore):
    """
    Durable store on a single aiosqlite connection.
    Call initialize() before use and close() when done.
    """

    def __init__(self, path: Union[str, Path]):
        self._path = str(path)
        self._conn: Optional[aiosqlite.Connection] = None

    async def initialize(self) -> None:
        if self._conn is not None:
            return
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._path)
        await self._conn.executescript(_SCHEMA)
        await self._conn.commit()
        logger.debug("Opened message store at %s", self._path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def _db(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise StoreError(
                "SQLiteMessageStore used before initialize()",
                user_hint="The message database is not open.",
            )
        return self._conn

    async def upsert(self, message: StoredMessage) -> None:
        try:
            await self._db.execute(
                _UPSERT,
                (
                    message.id,
                    message.conversation_id,
                    _text(message.role),
                    message.content,
                    message.created_at,
                    message.removed_at,
                ),
            )
            await self._db.commit()
        except aiosqlite.Error as e:
            raise StoreError(
                f"Failed to save message {message.id}: {e}", original_error=e
            ) from e

    async def query_active(self, conversation_id: str) -> List[StoredMessage]:
        try:
            async with self._db.execute(
                f"SELECT {_COLUMNS} FROM messages "
                "WHERE conversation_id = ? AND removed_at = 0 "
                "ORDER BY created_at ASC, id ASC",
                (conversation_id,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(
                f"Failed to load messages of conversation {conversation_id}: {e}",
                original_error=e,
            ) from e
        return [_row_to_message(row) for row in rows]

    async def get(self, message_id: str) -> Optional[StoredMessage]:
        try:
            async with self._db.execute(
                f"SELECT {_COLUMNS} FROM messages WHERE id = ?", (message_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(
                f"Failed to load message {message_id}: {e}", original_error=e
            ) from e
        return _row_to_message(row) if row else None


def _text(value) -> str:
    return getattr(value, "value", value)


def _row_to_message(row) -> StoredMessage:
    message_id, conversation_id, role, content, created_at, removed_at = row
    return StoredMessage(
        id=message_id,
        conversation_id=conversation_id,
        role=role,
        content=content,
        created_at=created_at,
        removed_at=removed_at,
    )
