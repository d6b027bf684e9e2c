"""
Conversation Context Policy
===========================
Decides which system prompt applies and which prior messages travel with a
new user message.
"""

from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from parley.chat.structs import (
    Conversation,
    Message,
    ResolvedContext,
    Role,
    StoredMessage,
)
from parley.config.settings import Settings


def _tail(items: Sequence, count: int) -> list:
    # items[-0:] would be the whole list; zero means none.
    if count <= 0:
        return []
    return list(items[-count:])


def _normalize_prompt(prompt: Optional[str]) -> Optional[str]:
    if prompt is None:
        return None
    return prompt if prompt.strip() else None


def resolve_context(
    conversation: Conversation,
    recent_messages: Sequence[StoredMessage],
    user_text: str,
    override: Optional[Conversation] = None,
    *,
    context_count: Optional[int] = None,
    default_prompt: Optional[str] = None,
) -> ResolvedContext:
    """
    Build the outgoing window for a new user message.

    With an override (a prompt shortcut), history is excluded: the window is
    exactly the new user message and the override's prompt applies.

    Otherwise the window is the last ``context_count`` active messages
    (defaulting to the conversation's own count) followed by the new user
    message. A count of zero sends only the new message.
    """
    new_message = Message(role=Role.USER.value, content=user_text)

    if override is not None:
        return ResolvedContext(
            system_prompt=_normalize_prompt(override.prompt),
            messages=[new_message],
            override=True,
        )

    if context_count is None:
        context_count = conversation.context_message_count

    history = [
        m.to_message()
        for m in _tail([m for m in recent_messages if m.is_active], context_count)
    ]
    prompt = default_prompt if default_prompt else conversation.prompt
    return ResolvedContext(
        system_prompt=_normalize_prompt(prompt),
        messages=history + [new_message],
    )


def matching_prompts(
    conversations: Iterable[Conversation], query: str
) -> List[Conversation]:
    """
    Prompt shortcuts matching a '/'-style query.

    Only conversations with a prompt qualify. The query matches title or
    prompt, case-insensitively; an empty query matches everything.
    """
    needle = query.lower().strip("/")
    return [
        c
        for c in conversations
        if c.prompt
        and (not needle or needle in c.title.lower() or needle in c.prompt.lower())
    ]


class ContextPolicy:
    """
    Resolves per-conversation inputs, giving the main conversation its
    process-wide context count and prompt from Settings.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def is_main(self, conversation: Conversation) -> bool:
        return conversation.id == self.settings.main_conversation_id

    def context_count_for(self, conversation: Conversation) -> int:
        if self.is_main(conversation):
            return self.settings.main_context_messages
        return conversation.context_message_count

    def prompt_for(
        self, conversation: Conversation, override: Optional[Conversation] = None
    ) -> Optional[str]:
        if override is not None:
            return _normalize_prompt(override.prompt)
        if self.is_main(conversation) and self.settings.main_prompt:
            return _normalize_prompt(self.settings.main_prompt)
        return _normalize_prompt(conversation.prompt)

    def resolve(
        self,
        conversation: Conversation,
        recent_messages: Sequence[StoredMessage],
        user_text: str,
        override: Optional[Conversation] = None,
    ) -> ResolvedContext:
        default_prompt = (
            self.settings.main_prompt if self.is_main(conversation) else None
        )
        return resolve_context(
            conversation,
            recent_messages,
            user_text,
            override,
            context_count=self.context_count_for(conversation),
            default_prompt=default_prompt,
        )

    def retry_window(
        self,
        conversation: Conversation,
        active_messages: Sequence[StoredMessage],
        override: Optional[Conversation] = None,
    ) -> ResolvedContext:
        """
        Rebuild a failed attempt's window from the store.

        After a failure the partial assistant turn is gone, so the last
        ``count + 1`` active messages are the history plus the user turn
        that was sent. With an override only that user turn is replayed.
        """
        active = [m for m in active_messages if m.is_active]
        keep = 1 if override is not None else self.context_count_for(conversation) + 1
        return ResolvedContext(
            system_prompt=self.prompt_for(conversation, override),
            messages=[m.to_message() for m in _tail(active, keep)],
            override=override is not None,
        )

    def with_context_count(
        self, conversation: Conversation, count: int
    ) -> Conversation:
        """
        Apply a new context count. The main conversation's count is a
        process-wide preference; other conversations carry their own.
        """
        if count < 0:
            raise ValueError("context message count must be >= 0")
        if self.is_main(conversation):
            self.settings.main_context_messages = count
            return conversation
        return replace(conversation, context_message_count=count)

    matching_prompts = staticmethod(matching_prompts)
