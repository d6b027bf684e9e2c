from .events import EventTypes
from .bus import EventBus
from .objects import (
    GeneratingIndicator,
    MessageUpdate,
    SessionFailure,
    SessionStatus,
    UserSubmission,
)

__all__ = [
    "EventTypes",
    "EventBus",
    "GeneratingIndicator",
    "MessageUpdate",
    "SessionFailure",
    "SessionStatus",
    "UserSubmission",
]
