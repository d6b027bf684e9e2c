from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from parley.chat.structs import SessionState, StoredMessage


@dataclass
class SessionStatus:
    """
    Payload for SESSION_STATE_CHANGED.
    """

    conversation_id: str
    session_id: str
    state: "SessionState"
    previous: "SessionState"


@dataclass
class MessageUpdate:
    """
    Payload for MESSAGE_UPDATED and SESSION_COMPLETED / SESSION_CANCELLED.
    The message is a snapshot; later chunks do not mutate it.
    """

    conversation_id: str
    session_id: str
    message: "StoredMessage"
    chunk_count: int = 0


@dataclass
class GeneratingIndicator:
    """
    Payload for GENERATING_STARTED / GENERATING_STOPPED.
    Advisory UI state only.
    """

    conversation_id: str
    session_id: str


@dataclass
class SessionFailure:
    """
    Payload for SESSION_FAILED.
    """

    conversation_id: str
    session_id: str
    error: Exception
    user_hint: str
    partial: Optional["StoredMessage"] = None


@dataclass
class UserSubmission:
    """
    Payload for USER_MESSAGE_SUBMITTED.
    """

    conversation_id: str
    message: "StoredMessage"
    override_title: Optional[str] = None
