from .structs import (
    Conversation,
    DeltaChunk,
    Message,
    ResolvedContext,
    Role,
    SessionOutcome,
    SessionState,
    StoredMessage,
)

__all__ = [
    "Conversation",
    "DeltaChunk",
    "Message",
    "ResolvedContext",
    "Role",
    "SessionOutcome",
    "SessionState",
    "StoredMessage",
]
