#!/usr/bin/env python3
"""
Base Exception Contract for Parley

Provides the single source of truth for the Parley error contract.
All domain-specific exceptions must inherit from ParleyBaseError.
"""

from typing import Optional


class ParleyBaseError(Exception):
    """
    The Base Contract for all Parley errors.
    """

    def __init__(
        self,
        message: str,
        original_error: Optional[Exception] = None,
        user_hint: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.user_hint = user_hint or "An internal error occurred."
        self.details = details or {}
