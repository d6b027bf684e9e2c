"""
Ordered Persistence
===================
Fire-and-forget writes that still land in submission order per conversation.
"""

import asyncio
import logging
from typing import Dict

from parley.chat.structs import StoredMessage
from parley.store.base import MessageStore

logger = logging.getLogger("MessageWriter")


class OrderedMessageWriter:
    """
    Queues upserts on a FIFO per conversation id.

    Each queue is drained by a short-lived worker task that exits once the
    queue is empty, so an idle conversation holds no task. Queued messages
    are snapshots: mutating the live message after submit() does not change
    what gets written.
    """

    def __init__(self, store: MessageStore):
        self._store = store
        self._queues: Dict[str, asyncio.Queue] = {}
        self._workers: Dict[str, asyncio.Task] = {}

    def submit(self, message: StoredMessage) -> None:
        """Queue a snapshot of the message without waiting for the write."""
        conversation_id = message.conversation_id
        queue = self._queues.setdefault(conversation_id, asyncio.Queue())
        queue.put_nowait(message.snapshot())

        worker = self._workers.get(conversation_id)
        if worker is None or worker.done():
            self._workers[conversation_id] = asyncio.create_task(
                self._drain(conversation_id, queue)
            )

    async def write(self, message: StoredMessage) -> None:
        """Queue a write and wait until it (and everything before it) landed."""
        self.submit(message)
        await self.flush(message.conversation_id)

    async def flush(self, conversation_id: str) -> None:
        queue = self._queues.get(conversation_id)
        if queue is not None:
            await queue.join()

    def pending(self, conversation_id: str) -> int:
        queue = self._queues.get(conversation_id)
        return queue.qsize() if queue is not None else 0

    async def _drain(self, conversation_id: str, queue: asyncio.Queue) -> None:
        while not queue.empty():
            message = queue.get_nowait()
            try:
                await self._store.upsert(message)
            except Exception as e:
                # Writes are fire-and-forget from the stream's point of view.
                logger.error(
                    f"Failed to persist message {message.id} "
                    f"for conversation {conversation_id}: {e}",
                    exc_info=True,
                )
            finally:
                queue.task_done()

        # No await since the empty check: the queue is still empty here.
        if self._queues.get(conversation_id) is queue:
            del self._queues[conversation_id]
        if self._workers.get(conversation_id) is asyncio.current_task():
            del self._workers[conversation_id]
