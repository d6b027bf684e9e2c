"""
Stream Assembly
===============
Folds delta chunks into one growing assistant message.
"""

import asyncio
import logging
from typing import AsyncIterable, Awaitable, Callable, Optional

from parley.chat.structs import DeltaChunk, Role, StoredMessage
from parley.exceptions.stream import StreamError

logger = logging.getLogger("StreamAssembler")

UpdateCallback = Callable[[StoredMessage], Awaitable[None]]


def fold_chunk(message: StoredMessage, chunk: DeltaChunk) -> None:
    """Role overwrites, content appends."""
    if chunk.role:
        message.role = chunk.role
    if chunk.content:
        message.content += chunk.content


class StreamAssembler:
    """
    Consumes a one-shot stream of DeltaChunk and accumulates the
    assistant message.

    on_update is awaited after every folded chunk, before the next chunk is
    requested, so every intermediate state is observable downstream.
    """

    async def assemble(
        self,
        conversation_id: str,
        chunks: AsyncIterable[DeltaChunk],
        on_update: UpdateCallback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StoredMessage:
        """
        Returns:
            The final message on exhaustion, or the message accumulated so far
            when cancel_event is set.

        Raises:
            StreamError: reading the next chunk failed. Carries the partial
            message and the number of chunks folded before the failure.
        """
        message = StoredMessage(
            role=Role.ASSISTANT.value, content="", conversation_id=conversation_id
        )
        iterator = chunks.__aiter__()
        folded = 0

        while True:
            if _cancelled(cancel_event):
                await close_stream(iterator)
                break

            try:
                chunk = await iterator.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.warning(
                    "Stream for conversation %s failed after %d chunk(s): %s",
                    conversation_id,
                    folded,
                    e,
                )
                raise StreamError(
                    f"Stream failed after {folded} chunk(s): {e}",
                    partial=message,
                    chunk_count=folded,
                    original_error=e,
                ) from e

            # Cancellation cannot interrupt a read that is already in flight;
            # the chunk it produced is dropped.
            if _cancelled(cancel_event):
                await close_stream(iterator)
                break

            fold_chunk(message, chunk)
            folded += 1
            await on_update(message)

        logger.debug(
            "Assembled %d chunk(s), %d chars for conversation %s",
            folded,
            len(message.content),
            conversation_id,
        )
        return message


def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


async def close_stream(iterator) -> None:
    aclose = getattr(iterator, "aclose", None)
    if aclose is None:
        return
    try:
        await aclose()
    except Exception as e:
        logger.debug(f"Ignoring error while closing cancelled stream: {e}")
