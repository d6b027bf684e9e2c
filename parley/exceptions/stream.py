#!/usr/bin/env python3
"""
Stream Exception Definitions for Parley
"""

from typing import TYPE_CHECKING, Optional

from .base import ParleyBaseError

if TYPE_CHECKING:
    from parley.chat.structs import StoredMessage


class StreamError(ParleyBaseError):
    """
    Raised by the stream assembler when reading the next chunk fails.

    The assistant message accumulated before the failure travels with the
    error so the caller can decide whether to keep or discard it.
    """

    def __init__(
        self,
        message: str,
        partial: Optional["StoredMessage"] = None,
        chunk_count: int = 0,
        **kwargs
    ):
        super().__init__(message, **kwargs)
        self.partial = partial
        self.chunk_count = chunk_count
        self.user_hint = "The response stream was interrupted. You can retry it."
