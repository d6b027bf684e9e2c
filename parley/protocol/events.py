from enum import Enum


class EventTypes(str, Enum):
    """
    Canonical event names emitted by the conversational core.
    Using an Enum prevents typo bugs between emitters and subscribers.
    """

    # 1. Session Lifecycle (Downstream)
    SESSION_STATE_CHANGED = "session_state_changed"
    GENERATING_STARTED = "generating_started"
    GENERATING_STOPPED = "generating_stopped"
    MESSAGE_UPDATED = "message_updated"
    SESSION_COMPLETED = "session_completed"
    SESSION_FAILED = "session_failed"
    SESSION_CANCELLED = "session_cancelled"

    # 2. Conversation Events
    USER_MESSAGE_SUBMITTED = "user_message_submitted"
    MESSAGES_CHANGED = "messages_changed"
    CONVERSATION_SWITCHED = "conversation_switched"
    PROMPT_SELECTED = "prompt_selected"
    CONTEXT_COUNT_CHANGED = "context_count_changed"
