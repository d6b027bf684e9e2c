#!/usr/bin/env python3
"""
Configuration Exception Definitions for Parley
"""

from .base import ParleyBaseError


class ConfigError(ParleyBaseError):
    """Raised when settings are missing or invalid."""

    def __init__(self, message, field_name=None, invalid_value=None):
        super().__init__(message)
        self.field_name = field_name
        self.invalid_value = invalid_value
        self.user_hint = "Please check your .env file and environment variables."
