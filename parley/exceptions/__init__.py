#!/usr/bin/env python3
"""
Parley Exceptions Package

Unified exception hierarchy for the conversational core.
"""

# Base exceptions
from .base import ParleyBaseError

# Session exceptions
from .session import NoRetryAvailableError, SessionBusyError, SessionError

# Provider exceptions
from .provider import (
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderError,
    ProviderRateLimitError,
    ProviderResponseError,
    TransportError,
)

# Stream exceptions
from .stream import StreamError

# Store exceptions
from .store import StoreError

# Config exceptions
from .config import ConfigError


__all__ = [
    # Base
    "ParleyBaseError",
    # Session
    "SessionError",
    "SessionBusyError",
    "NoRetryAvailableError",
    # Provider
    "ProviderError",
    "ProviderConfigurationError",
    "TransportError",
    "ProviderConnectionError",
    "ProviderRateLimitError",
    "ProviderResponseError",
    # Stream
    "StreamError",
    # Store
    "StoreError",
    # Config
    "ConfigError",
]
