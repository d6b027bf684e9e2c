from .base import CompletionClient
from .factory import create_client

__all__ = ["CompletionClient", "create_client"]
