"""
Completion Session Controller
=============================
Owns the lifecycle of one completion request per conversation:

    idle -> pending -> streaming -> completed | failed | cancelled

This is the only entry point callers use to talk to the completion client.
"""

import asyncio
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from parley.chat.assembler import StreamAssembler, close_stream
from parley.chat.structs import Message, SessionOutcome, SessionState, StoredMessage
from parley.chat.writer import OrderedMessageWriter
from parley.config.settings import Settings
from parley.exceptions import (
    NoRetryAvailableError,
    SessionBusyError,
    StreamError,
    TransportError,
)
from parley.protocol.bus import EventBus
from parley.protocol.events import EventTypes
from parley.protocol.objects import (
    GeneratingIndicator,
    MessageUpdate,
    SessionFailure,
    SessionStatus,
)
from parley.providers.base import CompletionClient
from parley.store.base import MessageStore

DEFAULT_INDICATOR_DELAY = 0.5


class CompletionSession:
    """Mutable bookkeeping for one in-flight request."""

    def __init__(
        self,
        conversation_id: str,
        messages: List[Message],
        prompt: Optional[str],
        override: bool,
    ):
        self.id = uuid.uuid4().hex
        self.conversation_id = conversation_id
        self.messages = messages
        self.prompt = prompt
        self.override = override
        self.state = SessionState.IDLE
        self.cancel_event = asyncio.Event()
        self.message: Optional[StoredMessage] = None
        self.chunk_count = 0
        self.indicator_shown = False

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


class CompletionSessionController:
    """
    Drives the completion client and the stream assembler for at most one
    session per conversation id.
    """

    def __init__(
        self,
        client: CompletionClient,
        store: MessageStore,
        event_bus: Optional[EventBus] = None,
        settings: Optional[Settings] = None,
        writer: Optional[OrderedMessageWriter] = None,
        assembler: Optional[StreamAssembler] = None,
    ):
        self.client = client
        self.store = store
        self.event_bus = event_bus or EventBus()
        self.writer = writer or OrderedMessageWriter(store)
        self.assembler = assembler or StreamAssembler()
        self.indicator_delay = (
            settings.generating_indicator_delay
            if settings is not None
            else DEFAULT_INDICATOR_DELAY
        )
        self.logger = logging.getLogger("CompletionSession")

        self._sessions: Dict[str, CompletionSession] = {}
        self._failures: Dict[str, SessionOutcome] = {}

    # --- Queries ---

    def is_active(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    def state_of(self, conversation_id: str) -> SessionState:
        session = self._sessions.get(conversation_id)
        return session.state if session else SessionState.IDLE

    def active_conversations(self) -> List[str]:
        return list(self._sessions)

    def last_failure(self, conversation_id: str) -> Optional[SessionOutcome]:
        return self._failures.get(conversation_id)

    def clear_failure(self, conversation_id: str) -> None:
        self._failures.pop(conversation_id, None)

    # --- Operations ---

    async def run(
        self,
        messages: Sequence[Message],
        prompt: Optional[str],
        conversation_id: str,
        *,
        override: bool = False,
    ) -> SessionOutcome:
        """
        Run one completion to a terminal state.

        Raises:
            SessionBusyError: a session for this conversation is in flight.
            Nothing is changed by the rejected call.
        """
        if conversation_id in self._sessions:
            raise SessionBusyError(
                f"A completion is already running for conversation {conversation_id}",
                conversation_id=conversation_id,
            )

        session = CompletionSession(conversation_id, list(messages), prompt, override)
        # Registered before the first await; this is the mutual-exclusion guard.
        self._sessions[conversation_id] = session
        self._failures.pop(conversation_id, None)
        indicator: Optional[asyncio.Task] = None

        try:
            await self._transition(session, SessionState.PENDING)
            indicator = asyncio.create_task(self._show_indicator_later(session))

            try:
                chunks = await self.client.open_stream(session.messages, prompt)
            except TransportError as e:
                if session.cancel_requested:
                    return await self._settle_cancelled(session)
                return await self._settle_failed(session, e)

            if session.cancel_requested:
                await close_stream(chunks)
                return await self._settle_cancelled(session)

            await self._transition(session, SessionState.STREAMING)

            async def on_update(message: StoredMessage) -> None:
                await self._on_update(session, message)

            try:
                session.message = await self.assembler.assemble(
                    conversation_id, chunks, on_update, session.cancel_event
                )
            except StreamError as e:
                session.message = e.partial
                if session.cancel_requested:
                    return await self._settle_cancelled(session)
                return await self._settle_failed(session, e.original_error or e)

            if session.cancel_requested:
                return await self._settle_cancelled(session)
            return await self._settle_completed(session)

        finally:
            if indicator is not None:
                indicator.cancel()
            if self._sessions.get(conversation_id) is session:
                del self._sessions[conversation_id]

    def cancel(self, conversation_id: str) -> bool:
        """
        Request cooperative cancellation. Observed between chunk reads; a read
        already in flight is not interrupted.

        Returns False when no session is active for the conversation.
        """
        session = self._sessions.get(conversation_id)
        if session is None:
            return False
        if not session.cancel_requested:
            self.logger.info(
                "Cancellation requested for conversation %s (session %s, %s)",
                conversation_id,
                session.id,
                session.state.value,
            )
            session.cancel_event.set()
        return True

    async def retry(self, conversation_id: str) -> SessionOutcome:
        """
        Replay the window of the last failed attempt through a fresh run.
        With an override prompt only the final user turn is replayed.
        """
        if conversation_id in self._sessions:
            raise SessionBusyError(
                f"A completion is already running for conversation {conversation_id}",
                conversation_id=conversation_id,
            )
        failure = self._failures.pop(conversation_id, None)
        if failure is None:
            raise NoRetryAvailableError(
                f"No failed completion to retry for conversation {conversation_id}",
                conversation_id=conversation_id,
            )

        messages = failure.sent_messages
        if failure.override:
            messages = messages[-1:]
        self.logger.info(
            "Retrying conversation %s with %d message(s)",
            conversation_id,
            len(messages),
        )
        return await self.run(
            messages, failure.prompt, conversation_id, override=failure.override
        )

    async def shutdown(self) -> None:
        """Cancel every in-flight session and flush pending writes."""
        for conversation_id in list(self._sessions):
            self.cancel(conversation_id)
            await self.writer.flush(conversation_id)

    # --- Internals ---

    async def _transition(self, session: CompletionSession, state: SessionState) -> None:
        previous = session.state
        session.state = state
        self.logger.debug(
            "Session %s [%s]: %s -> %s",
            session.id,
            session.conversation_id,
            previous.value,
            state.value,
        )
        await self.event_bus.emit(
            EventTypes.SESSION_STATE_CHANGED,
            SessionStatus(
                conversation_id=session.conversation_id,
                session_id=session.id,
                state=state,
                previous=previous,
            ),
        )

    async def _on_update(self, session: CompletionSession, message: StoredMessage) -> None:
        session.message = message
        session.chunk_count += 1
        if session.chunk_count == 1:
            await self._hide_indicator(session)

        self.writer.submit(message)
        await self.event_bus.emit(
            EventTypes.MESSAGE_UPDATED,
            MessageUpdate(
                conversation_id=session.conversation_id,
                session_id=session.id,
                message=message.snapshot(),
                chunk_count=session.chunk_count,
            ),
        )

    async def _show_indicator_later(self, session: CompletionSession) -> None:
        await asyncio.sleep(self.indicator_delay)
        # Advisory only: never touches settled sessions.
        if session.state.is_terminal or session.chunk_count:
            return
        session.indicator_shown = True
        await self.event_bus.emit(
            EventTypes.GENERATING_STARTED,
            GeneratingIndicator(session.conversation_id, session.id),
        )

    async def _hide_indicator(self, session: CompletionSession) -> None:
        if not session.indicator_shown:
            return
        session.indicator_shown = False
        await self.event_bus.emit(
            EventTypes.GENERATING_STOPPED,
            GeneratingIndicator(session.conversation_id, session.id),
        )

    def _outcome(
        self, session: CompletionSession, error: Optional[Exception] = None
    ) -> SessionOutcome:
        return SessionOutcome(
            state=session.state,
            conversation_id=session.conversation_id,
            session_id=session.id,
            message=session.message.snapshot() if session.message else None,
            error=error,
            sent_messages=list(session.messages),
            prompt=session.prompt,
            override=session.override,
        )

    async def _settle_completed(self, session: CompletionSession) -> SessionOutcome:
        # Already persisted per chunk; the final write is idempotent.
        # An empty stream leaves nothing to persist.
        if session.chunk_count:
            await self.writer.write(session.message)
        else:
            await self.writer.flush(session.conversation_id)
        await self._hide_indicator(session)
        await self._transition(session, SessionState.COMPLETED)

        outcome = self._outcome(session)
        self.logger.info(
            "Session %s completed: %d chunk(s), %d chars",
            session.id,
            session.chunk_count,
            len(outcome.content),
        )
        await self.event_bus.emit(
            EventTypes.SESSION_COMPLETED,
            MessageUpdate(
                conversation_id=session.conversation_id,
                session_id=session.id,
                message=outcome.message,
                chunk_count=session.chunk_count,
            ),
        )
        return outcome

    async def _settle_failed(
        self, session: CompletionSession, error: Exception
    ) -> SessionOutcome:
        partial = session.message
        # A failed attempt must not leave a visible truncated assistant turn.
        if partial is not None and session.chunk_count:
            partial.mark_removed()
            self.writer.submit(partial)
        await self.writer.flush(session.conversation_id)
        await self._hide_indicator(session)
        await self._transition(session, SessionState.FAILED)

        outcome = self._outcome(session, error)
        self._failures[session.conversation_id] = outcome
        self.logger.warning(
            "Session %s failed after %d chunk(s): %s",
            session.id,
            session.chunk_count,
            error,
        )
        await self.event_bus.emit(
            EventTypes.SESSION_FAILED,
            SessionFailure(
                conversation_id=session.conversation_id,
                session_id=session.id,
                error=error,
                user_hint=getattr(error, "user_hint", str(error)),
                partial=outcome.message,
            ),
        )
        return outcome

    async def _settle_cancelled(self, session: CompletionSession) -> SessionOutcome:
        # Partial content already persisted stays as-is.
        await self.writer.flush(session.conversation_id)
        await self._hide_indicator(session)
        await self._transition(session, SessionState.CANCELLED)

        outcome = self._outcome(session)
        self.logger.info(
            "Session %s cancelled after %d chunk(s)", session.id, session.chunk_count
        )
        await self.event_bus.emit(
            EventTypes.SESSION_CANCELLED,
            MessageUpdate(
                conversation_id=session.conversation_id,
                session_id=session.id,
                message=outcome.message,
                chunk_count=session.chunk_count,
            ),
        )
        return outcome
