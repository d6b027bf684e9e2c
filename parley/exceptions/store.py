#!/usr/bin/env python3
"""
Store Exception Definitions for Parley
"""

from .base import ParleyBaseError


class StoreError(ParleyBaseError):
    """Base exception for message store failures."""

    pass

