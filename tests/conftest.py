# Shared fakes for the conversational core tests

import asyncio
from typing import Any, List, Optional

import pytest

from parley.chat.structs import Conversation, DeltaChunk, Message, StoredMessage
from parley.config.settings import Settings
from parley.protocol.bus import EventBus
from parley.providers.base import CompletionClient
from parley.store.memory import InMemoryMessageStore


class FakeCompletionClient(CompletionClient):
    """
    Scripted completion client.

    Each script is consumed by one open_stream() call. A script is either an
    Exception (raised by open_stream) or a list whose items are yielded in
    order: DeltaChunk items are yielded, Exception items are raised
    mid-stream, and asyncio.Event items pause the stream until set.
    """

    name = "fake"

    def __init__(self, *scripts: Any):
        self.scripts = list(scripts)
        self.requests: List[tuple] = []
        self.open_gate: Optional[asyncio.Event] = None
        self.closed = 0

    def add(self, script: Any) -> None:
        self.scripts.append(script)

    async def open_stream(self, messages, system_prompt=None):
        self.requests.append(([Message(m.role, m.content) for m in messages], system_prompt))
        if self.open_gate is not None:
            await self.open_gate.wait()
        script = self.scripts.pop(0) if self.scripts else []
        if isinstance(script, Exception):
            raise script
        return self._stream(script)

    async def _stream(self, script):
        try:
            for item in script:
                await asyncio.sleep(0)
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed += 1

    async def validate_connection(self) -> bool:
        return True


class RecordingStore(InMemoryMessageStore):
    """In-memory store that records every upsert it receives."""

    def __init__(self):
        super().__init__()
        self.writes: List[StoredMessage] = []

    async def upsert(self, message: StoredMessage) -> None:
        self.writes.append(message.snapshot())
        await super().upsert(message)


class EventRecorder:
    """Collects (event_type, payload) pairs from an EventBus."""

    def __init__(self):
        self.events: List[tuple] = []

    def handler_for(self, event_type):
        async def _handler(data):
            self.events.append((event_type, data))

        return _handler

    async def attach(self, bus: EventBus, *event_types) -> "EventRecorder":
        for event_type in event_types:
            await bus.subscribe(event_type, self.handler_for(event_type))
        return self

    def types(self) -> list:
        return [event_type for event_type, _ in self.events]

    def of(self, event_type) -> list:
        return [data for t, data in self.events if t == event_type]


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


def chunks(*parts: str, role: Optional[str] = "assistant") -> List[DeltaChunk]:
    """Build a chunk script: a role-only first chunk, then content chunks."""
    script = [DeltaChunk(role=role)] if role else []
    script.extend(DeltaChunk(content=part) for part in parts)
    return script


def history(conversation_id: str, *turns: str) -> List[StoredMessage]:
    """Alternating user/assistant stored messages, in creation order."""
    roles = ["user", "assistant"]
    return [
        StoredMessage(role=roles[i % 2], content=text, conversation_id=conversation_id)
        for i, text in enumerate(turns)
    ]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        llm_provider="openai",
        openai_api_key="test-key",
        generating_indicator_delay=0.05,
        main_conversation_id="main",
        main_context_messages=0,
        main_prompt="",
        log_level="DEBUG",
    )


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def conversation():
    return Conversation(
        id="chat-1", title="Chat", prompt="You are terse.", context_message_count=2
    )
