#!/usr/bin/env python3
"""
Provider Exception Classes
==========================

Errors raised by completion clients. Every TransportError is retryable
by the user; none are retried automatically.
"""

from typing import Optional

from .base import ParleyBaseError


class ProviderError(ParleyBaseError):
    """
    Base exception for all provider-related errors.
    """

    def __init__(
        self,
        message: str,
        provider_name: Optional[str] = None,
        model_name: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, **kwargs)

        if "provider_name" not in self.details and provider_name:
            self.details["provider_name"] = provider_name
        if "model_name" not in self.details and model_name:
            self.details["model_name"] = model_name


class ProviderConfigurationError(ProviderError):
    """
    Raised when provider configuration is invalid or missing
    (unknown provider name, missing SDK, missing API key).
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = (
            "The provider configuration is invalid. "
            "Please check your configuration files and environment variables."
        )


class TransportError(ProviderError):
    """
    Raised when a completion request cannot be established, or when the
    response stream breaks while it is being read.
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = kwargs.get("user_hint") or "The request failed. You can retry it."


class ProviderConnectionError(TransportError):
    """
    Raised for network-level failures (DNS, refused connections, timeouts).
    """

    def __init__(self, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.user_hint = (
            "Failed to connect to the provider. "
            "Please check your internet connection and provider status."
        )


class ProviderRateLimitError(TransportError):
    """
    Raised when provider rate limits are exceeded.
    """

    def __init__(self, message: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)

        if retry_after is not None:
            self.details["retry_after_seconds"] = retry_after

        if retry_after:
            self.user_hint = (
                f"Rate limit exceeded. Please wait {retry_after} seconds before trying again."
            )
        else:
            self.user_hint = (
                "Rate limit exceeded. Please wait before making additional requests."
            )


class ProviderResponseError(TransportError):
    """
    Raised when the provider answers with an API error status or with data
    that cannot be read as a completion stream.
    """

    def __init__(
        self, message: str, status_code: Optional[int] = None, **kwargs
    ):
        super().__init__(message, **kwargs)

        if status_code is not None:
            self.details["status_code"] = status_code

        self.user_hint = (
            "The provider returned an error. "
            "This may be a temporary issue; try again."
        )
