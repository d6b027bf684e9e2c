import inspect
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from parley.chat.structs import DeltaChunk, Message
from parley.config.settings import Settings
from parley.exceptions.provider import (
    ProviderConfigurationError,
    ProviderConnectionError,
    ProviderRateLimitError,
    ProviderResponseError,
    TransportError,
)
from .base import CompletionClient

logger = logging.getLogger("OpenAICompletionClient")

ALLOWED_OPTIONS = {
    "temperature",
    "top_p",
    "max_tokens",
    "presence_penalty",
    "frequency_penalty",
    "seed",
    "stop",
    "user",
}


class OpenAICompletionClient(CompletionClient):
    """
    Adapter for any OpenAI-compatible chat-completions endpoint.
    Maps streamed choice deltas -> DeltaChunk.
    """

    name = "openai"

    def __init__(self, settings: Settings, client: Any = None):
        self.base_url = settings.openai_base_url.rstrip("/")
        self.model_name = settings.completion_model
        self.options = self._sanitize_options(settings.request_options)

        if client is not None:
            self.client = client
            return

        if not settings.openai_api_key:
            raise ProviderConfigurationError(
                "OPENAI_API_KEY is required when LLM_PROVIDER=openai.",
                provider_name=self.name,
            )
        self.client = AsyncOpenAI(api_key=settings.openai_api_key, base_url=self.base_url)

    async def validate_connection(self) -> bool:
        try:
            await self.client.models.list()
            return True
        except Exception as exc:
            logger.error("OpenAI-compatible connection failed: %s", exc)
            return False

    async def open_stream(
        self,
        messages: List[Message],
        system_prompt: Optional[str] = None,
    ) -> AsyncIterator[DeltaChunk]:
        request_payload: Dict[str, Any] = {
            "model": self.model_name,
            "messages": self.build_payload(messages, system_prompt),
            "stream": True,
        }
        request_payload.update(self.options)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Completion request payload: %s",
                json.dumps(request_payload, ensure_ascii=False, default=str),
            )

        try:
            stream = await self.client.chat.completions.create(**request_payload)
        except Exception as exc:
            raise self._to_transport_error(exc) from exc

        return self._iter_deltas(stream)

    async def _iter_deltas(self, stream: Any) -> AsyncIterator[DeltaChunk]:
        try:
            async for chunk in stream:
                chunk_data = self._to_dict(chunk)
                choices = chunk_data.get("choices") or []
                for choice in choices:
                    if not isinstance(choice, dict):
                        continue
                    delta = choice.get("delta") or {}
                    role = delta.get("role") or None
                    content = delta.get("content")
                    if isinstance(content, list):
                        content = self._extract_content_parts(content)
                    if role is None and not content:
                        continue
                    yield DeltaChunk(role=role, content=content or None)
        except TransportError:
            raise
        except Exception as exc:
            logger.error("Completion stream failed: %s", exc, exc_info=True)
            raise self._to_transport_error(exc) from exc
        finally:
            close = getattr(stream, "close", None)
            if callable(close):
                result = close()
                if inspect.isawaitable(result):
                    await result

    @staticmethod
    def _to_dict(value: Any) -> Dict[str, Any]:
        if isinstance(value, dict):
            return value
        model_dump = getattr(value, "model_dump", None)
        if callable(model_dump):
            dumped = model_dump()
            if isinstance(dumped, dict):
                return dumped
        return {}

    @staticmethod
    def _extract_content_parts(parts: List[Any]) -> str:
        content_chunks: List[str] = []
        for part in parts:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text" and part.get("text"):
                content_chunks.append(str(part["text"]))
        return "".join(content_chunks)

    @staticmethod
    def _sanitize_options(options: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(options, dict):
            return {}
        return {k: v for k, v in options.items() if k in ALLOWED_OPTIONS}

    def _to_transport_error(self, exc: Exception) -> TransportError:
        status_code = getattr(exc, "status_code", None)
        body = getattr(exc, "body", None)
        snippet = str(body)[:600] if body is not None else ""
        common = {
            "provider_name": self.name,
            "model_name": self.model_name,
            "original_error": exc,
        }

        if status_code is None:
            return ProviderConnectionError(f"Completion request failed: {exc}", **common)

        status_code = int(status_code)
        if status_code == 429:
            retry_after = None
            response = getattr(exc, "response", None)
            headers = getattr(response, "headers", None) or {}
            if headers.get("retry-after", "").isdigit():
                retry_after = int(headers["retry-after"])
            return ProviderRateLimitError(
                f"Completion API rate limited (429). {snippet}".strip(),
                retry_after=retry_after,
                **common,
            )

        reason = {
            401: "unauthorized",
            403: "forbidden",
            404: "not_found",
        }.get(status_code, "api_error")
        message = f"Completion API error ({status_code} {reason})."
        if snippet:
            message = f"{message} Response snippet: {snippet}"
        return ProviderResponseError(message, status_code=status_code, **common)
