import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional

_last_timestamp = 0.0


def new_timestamp() -> float:
    """
    Wall-clock seconds, strictly increasing within the process.

    A user turn and the assistant turn created right after it must never
    share a timestamp, or their display order would depend on their ids.
    """
    global _last_timestamp
    now = time.time()
    if now <= _last_timestamp:
        now = _last_timestamp + 1e-6
    _last_timestamp = now
    return now


def new_message_id() -> str:
    return uuid.uuid4().hex


# --- 0. Roles & Wire Messages ---


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    """Outgoing request unit. No identity beyond its position in the list."""

    role: str
    content: str

    def to_dict(self) -> Dict[str, str]:
        role = self.role.value if isinstance(self.role, Role) else self.role
        return {"role": role, "content": self.content}


@dataclass
class DeltaChunk:
    """
    One incremental fragment of a streamed response.

    role is present only on the first chunk of a message. content is
    appended to what came before, never replacing it. There is no end
    marker: exhaustion of the stream ends the message.
    """

    role: Optional[str] = None
    content: Optional[str] = None


# --- 1. Persisted Entities ---


@dataclass
class StoredMessage:
    """
    A persisted chat message.

    removed_at is a logical-delete marker (0 means active). Once set it is
    never cleared.
    """

    role: str
    content: str
    conversation_id: str
    id: str = field(default_factory=new_message_id)
    created_at: float = field(default_factory=new_timestamp)
    removed_at: float = 0.0

    @property
    def is_active(self) -> bool:
        return not self.removed_at

    def mark_removed(self, at: Optional[float] = None) -> None:
        if self.removed_at:
            return
        self.removed_at = at if at is not None else time.time()

    def to_message(self) -> Message:
        """Strip storage metadata for sending."""
        return Message(role=self.role, content=self.content)

    def snapshot(self) -> "StoredMessage":
        return replace(self)

    def sort_key(self):
        return (self.created_at, self.id)


@dataclass
class Conversation:
    """Owned by the UI layer; read-only to the core."""

    id: str
    title: str
    prompt: str = ""
    context_message_count: int = 0


# --- 2. Session Lifecycle ---


class SessionState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            SessionState.COMPLETED,
            SessionState.FAILED,
            SessionState.CANCELLED,
        )


@dataclass
class SessionOutcome:
    """Terminal report of one completion session."""

    state: SessionState
    conversation_id: str
    session_id: str
    message: Optional[StoredMessage] = None
    error: Optional[Exception] = None
    sent_messages: List[Message] = field(default_factory=list)
    prompt: Optional[str] = None
    override: bool = False

    @property
    def succeeded(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def content(self) -> str:
        return self.message.content if self.message else ""

    @property
    def role(self) -> Optional[str]:
        return self.message.role if self.message else None


@dataclass
class ResolvedContext:
    """What gets sent for one completion request."""

    system_prompt: Optional[str]
    messages: List[Message]
    override: bool = False
