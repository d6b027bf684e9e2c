"""
Parley: the conversational core of a chat client.

Streams assistant responses from a completion service into persisted
messages, one session per conversation at a time.
"""

from parley.chat.structs import (
    Conversation,
    DeltaChunk,
    Message,
    SessionOutcome,
    SessionState,
    StoredMessage,
)
from parley.chat.assembler import StreamAssembler
from parley.chat.context_policy import ContextPolicy
from parley.chat.controller import CompletionSessionController
from parley.chat.service import ConversationService
from parley.config import Settings, load_settings
from parley.protocol import EventBus, EventTypes

__version__ = "0.1.0"

__all__ = [
    "CompletionSessionController",
    "ContextPolicy",
    "Conversation",
    "ConversationService",
    "DeltaChunk",
    "Message",
    "SessionOutcome",
    "SessionState",
    "StoredMessage",
    "StreamAssembler",
    "Settings",
    "load_settings",
    "EventBus",
    "EventTypes",
]
