#!/usr/bin/env python3
"""
Session Exception Definitions for Parley

Raised by the completion session controller and the conversation service.
"""

from typing import Optional

from .base import ParleyBaseError


class SessionError(ParleyBaseError):
    """Base exception for completion session errors."""

    def __init__(self, message: str, conversation_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.conversation_id = conversation_id
        if conversation_id and "conversation_id" not in self.details:
            self.details["conversation_id"] = conversation_id


class SessionBusyError(SessionError):
    """
    Raised when a completion is requested for a conversation that already
    has a session in flight. Nothing is changed by the rejected call.
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "A response is still being generated for this chat."


class NoRetryAvailableError(SessionError):
    """Raised when retry is requested but no failed attempt is recorded."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = "There is no failed message to retry."
