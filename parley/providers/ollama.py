import logging
from typing import Any, AsyncIterator, List, Optional

from ollama import AsyncClient, ResponseError

from parley.chat.structs import DeltaChunk, Message
from parley.config.settings import Settings
from parley.exceptions.provider import (
    ProviderConnectionError,
    ProviderResponseError,
    TransportError,
)
from .base import CompletionClient

logger = logging.getLogger("OllamaCompletionClient")


class OllamaCompletionClient(CompletionClient):
    """
    Adapter for Ollama (Local & Cloud).
    Maps native SDK chat chunks -> DeltaChunk.
    """

    name = "ollama"

    def __init__(self, settings: Settings, client: Any = None):
        self.host = settings.ollama_host
        self.model_name = settings.completion_model
        self.options = dict(settings.request_options) or None

        if client is not None:
            self.client = client
            return

        headers = {}
        if settings.ollama_api_key:
            headers["Authorization"] = f"Bearer {settings.ollama_api_key}"

        # One client, reused for every request.
        self.client = AsyncClient(host=self.host, headers=headers)

    async def validate_connection(self) -> bool:
        try:
            await self.client.list()
            return True
        except Exception as e:
            logger.error(f"Ollama Connection Failed: {e}")
            return False

    async def open_stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[DeltaChunk]:
        try:
            stream = await self.client.chat(
                model=self.model_name,
                messages=self.build_payload(messages, system_prompt),
                options=self.options,
                stream=True,
            )
        except Exception as e:
            raise self._to_transport_error(e) from e

        return self._iter_deltas(stream)

    async def _iter_deltas(self, stream: Any) -> AsyncIterator[DeltaChunk]:
        first = True
        try:
            async for chunk in stream:
                message = chunk.message
                # Ollama repeats the role on every chunk; only the first carries it.
                role = message.role if first else None
                first = False
                content = message.content or None
                if role is None and content is None:
                    continue
                yield DeltaChunk(role=role, content=content)
        except TransportError:
            raise
        except Exception as e:
            logger.error(f"Stream Error: {e}", exc_info=True)
            raise self._to_transport_error(e) from e

    def _to_transport_error(self, e: Exception) -> TransportError:
        common = {
            "provider_name": self.name,
            "model_name": self.model_name,
            "original_error": e,
        }
        if isinstance(e, ResponseError):
            return ProviderResponseError(
                f"Ollama request failed: {e.error}",
                status_code=e.status_code,
                **common,
            )
        return ProviderConnectionError(f"Ollama stream failed: {str(e)}", **common)
