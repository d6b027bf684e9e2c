from abc import ABC, abstractmethod
from typing import AsyncIterator, List, Optional

from parley.chat.structs import DeltaChunk, Message


class CompletionClient(ABC):
    """
    The Abstract Base Class (Contract) for completion services.
    """

    name: str = "base"

    @abstractmethod
    async def open_stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[DeltaChunk]:
        """
        Establish a streaming completion request.

        Raises:
            TransportError: the request could not be established.

        Returns:
            A lazy, one-shot async iterator of DeltaChunk. Iteration may
            itself raise TransportError.
        """
        pass

    @abstractmethod
    async def validate_connection(self) -> bool:
        """
        Ping the provider to ensure availability/authentication.
        """
        pass

    @staticmethod
    def build_payload(
        messages: List[Message], system_prompt: Optional[str] = None
    ) -> List[dict]:
        """System prompt first, then the window in order."""
        payload = []
        if system_prompt:
            payload.append({"role": "system", "content": system_prompt})
        payload.extend(message.to_dict() for message in messages)
        return payload
