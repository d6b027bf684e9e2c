"""
Parley Conversation Service
===========================
The caller-facing surface of the conversational core. Holds the active
conversation and the selected prompt shortcut, persists user turns, and
hands completions to the session controller. No UI coupling: everything a
view needs is either returned or emitted on the event bus.
"""

import asyncio
import logging
import time
import uuid
from typing import Dict, Iterable, List, Optional

from parley.chat.context_policy import ContextPolicy
from parley.chat.controller import CompletionSessionController
from parley.chat.structs import (
    Conversation,
    ResolvedContext,
    Role,
    SessionOutcome,
    SessionState,
    StoredMessage,
)
from parley.exceptions import NoRetryAvailableError, SessionBusyError
from parley.protocol.bus import EventBus
from parley.protocol.events import EventTypes
from parley.protocol.objects import UserSubmission


class ConversationService:
    """
    One view onto one active conversation at a time.
    """

    def __init__(
        self,
        controller: CompletionSessionController,
        policy: ContextPolicy,
        conversation: Conversation,
        event_bus: Optional[EventBus] = None,
    ):
        self.controller = controller
        self.store = controller.store
        self.writer = controller.writer
        self.policy = policy
        self.event_bus = event_bus or controller.event_bus
        self.conversation = conversation
        self.selected_prompt: Optional[Conversation] = None
        self.last_error: Optional[Exception] = None
        self.logger = logging.getLogger("ConversationService")

        # Conversations between the busy check and controller.run(), each with
        # its own cancel request.
        self._submitting: Dict[str, asyncio.Event] = {}

    # --- State ---

    @property
    def is_sending(self) -> bool:
        cid = self.conversation.id
        return cid in self._submitting or self.controller.is_active(cid)

    @property
    def state(self) -> SessionState:
        return self.controller.state_of(self.conversation.id)

    @property
    def context_count(self) -> int:
        return self.policy.context_count_for(self.conversation)

    @property
    def prompt_text(self) -> str:
        """The prompt that the next submit would use."""
        return self.policy.prompt_for(self.conversation, self.selected_prompt) or ""

    async def messages(self) -> List[StoredMessage]:
        return await self.store.query_active(self.conversation.id)

    # --- Completion ---

    async def submit(self, text: str) -> SessionOutcome:
        """
        Persist a user turn and run a completion for it.

        A cancel or conversation switch that arrives while the user turn is
        still being saved settles the submit as cancelled without contacting
        the completion client; the saved turn stays and can be retried.

        Raises:
            ValueError: text is empty.
            SessionBusyError: a completion is already running; nothing is
            persisted in that case.
        """
        if not text or not text.strip():
            raise ValueError("Cannot submit an empty message")

        conversation = self.conversation
        cid = conversation.id
        self._ensure_idle(cid)
        cancel_requested = self._submitting[cid] = asyncio.Event()
        try:
            history = await self.messages()
            user_message = StoredMessage(
                role=Role.USER.value, content=text, conversation_id=cid
            )
            await self.writer.write(user_message)
            self.last_error = None

            override = self.selected_prompt
            context = self.policy.resolve(conversation, history, text, override)
            self.logger.info(
                "Submitting to conversation %s: %d message(s), override=%s",
                cid,
                len(context.messages),
                override.title if override else None,
            )
            await self.event_bus.emit(
                EventTypes.USER_MESSAGE_SUBMITTED,
                UserSubmission(
                    conversation_id=cid,
                    message=user_message,
                    override_title=override.title if override else None,
                ),
            )
        finally:
            self._submitting.pop(cid, None)

        return await self._run(cid, context, cancel_requested)

    def cancel(self) -> bool:
        """Cancel the running completion, or the submit about to start one."""
        cid = self.conversation.id
        pending = self._cancel_submission(cid)
        return self.controller.cancel(cid) or pending

    async def retry(self) -> SessionOutcome:
        """
        Clear the current error and replay the last failed attempt.

        Uses the window the controller recorded for the failure; when none is
        recorded (e.g. after a restart) and the last stored turn is the user's,
        the window is rebuilt from the store.
        """
        conversation = self.conversation
        cid = conversation.id
        self._ensure_idle(cid)
        self.last_error = None

        if self.controller.last_failure(cid) is not None:
            outcome = await self.controller.retry(cid)
            return await self._record(outcome)

        cancel_requested = self._submitting[cid] = asyncio.Event()
        try:
            active = await self.messages()
            if not active or active[-1].role != Role.USER.value:
                raise NoRetryAvailableError(
                    f"No unanswered user message to retry in conversation {cid}",
                    conversation_id=cid,
                )
            context = self.policy.retry_window(
                conversation, active, self.selected_prompt
            )
        finally:
            self._submitting.pop(cid, None)

        return await self._run(cid, context, cancel_requested)

    def clear_error(self) -> None:
        self.last_error = None
        self.controller.clear_failure(self.conversation.id)

    # --- Conversation Management ---

    async def switch_conversation(self, conversation: Conversation) -> None:
        """
        Make another conversation active. Any in-flight completion of the
        previous conversation is cancelled first.
        """
        previous = self.conversation
        self._cancel_submission(previous.id)
        if self.controller.cancel(previous.id):
            self.logger.info(
                "Cancelled in-flight completion of %s before switching", previous.id
            )
        self.controller.clear_failure(previous.id)

        self.conversation = conversation
        self.selected_prompt = None
        self.last_error = None
        await self.event_bus.emit(
            EventTypes.CONVERSATION_SWITCHED,
            {"previous": previous.id, "conversation_id": conversation.id},
        )

    async def select_prompt(self, prompt: Optional[Conversation]) -> None:
        """Select (or clear with None) a prompt shortcut for the next submits."""
        self.selected_prompt = prompt
        await self.event_bus.emit(
            EventTypes.PROMPT_SELECTED,
            {
                "conversation_id": self.conversation.id,
                "prompt_id": prompt.id if prompt else None,
            },
        )

    def matching_prompts(
        self, conversations: Iterable[Conversation], query: str
    ) -> List[Conversation]:
        """Prompt shortcuts are only offered in the main conversation."""
        if not self.policy.is_main(self.conversation):
            return []
        return self.policy.matching_prompts(conversations, query)

    async def set_context_count(self, count: int) -> None:
        self.conversation = self.policy.with_context_count(self.conversation, count)
        await self.event_bus.emit(
            EventTypes.CONTEXT_COUNT_CHANGED,
            {"conversation_id": self.conversation.id, "count": count},
        )

    async def delete_message(self, message: StoredMessage) -> None:
        removed = message.snapshot()
        removed.mark_removed()
        await self.writer.write(removed)
        await self._messages_changed()

    async def clean_messages(self) -> int:
        """Logically remove every active message, sharing one timestamp."""
        removed_at = time.time()
        active = await self.messages()
        for message in active:
            message.mark_removed(removed_at)
            self.writer.submit(message)
        await self.writer.flush(self.conversation.id)
        self.logger.info(
            "Removed %d message(s) from conversation %s",
            len(active),
            self.conversation.id,
        )
        await self._messages_changed()
        return len(active)

    # --- Internals ---

    def _ensure_idle(self, cid: str) -> None:
        if cid in self._submitting or self.controller.is_active(cid):
            raise SessionBusyError(
                f"A completion is already running for conversation {cid}",
                conversation_id=cid,
            )

    def _cancel_submission(self, cid: str) -> bool:
        pending = self._submitting.get(cid)
        if pending is None:
            return False
        pending.set()
        return True

    async def _run(
        self, cid: str, context: ResolvedContext, cancel_requested: asyncio.Event
    ) -> SessionOutcome:
        if cancel_requested.is_set():
            self.logger.info(
                "Submission to %s cancelled before the completion started", cid
            )
            outcome = SessionOutcome(
                state=SessionState.CANCELLED,
                conversation_id=cid,
                session_id=uuid.uuid4().hex,
                sent_messages=list(context.messages),
                prompt=context.system_prompt,
                override=context.override,
            )
            return await self._record(outcome)

        outcome = await self.controller.run(
            context.messages, context.system_prompt, cid, override=context.override
        )
        return await self._record(outcome)

    async def _record(self, outcome: SessionOutcome) -> SessionOutcome:
        if outcome.state == SessionState.FAILED:
            # Only surface it if the user is still looking at that conversation.
            if outcome.conversation_id == self.conversation.id:
                self.last_error = outcome.error
        await self._messages_changed(outcome.conversation_id)
        return outcome

    async def _messages_changed(self, conversation_id: Optional[str] = None) -> None:
        await self.event_bus.emit(
            EventTypes.MESSAGES_CHANGED,
            {"conversation_id": conversation_id or self.conversation.id},
        )
