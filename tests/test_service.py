# Test suite for the conversation service

import asyncio

import pytest

from conftest import (
    EventRecorder,
    FakeCompletionClient,
    RecordingStore,
    chunks,
    history,
    wait_until,
)
from parley.chat.context_policy import ContextPolicy
from parley.chat.controller import CompletionSessionController
from parley.chat.service import ConversationService
from parley.chat.structs import Conversation, DeltaChunk, Message, SessionState
from parley.exceptions import (
    NoRetryAvailableError,
    ProviderConnectionError,
    SessionBusyError,
)
from parley.protocol.events import EventTypes


class SlowStore(RecordingStore):
    """Store whose reads and writes yield to the loop for a while."""

    def __init__(self, delay=0.01):
        super().__init__()
        self.delay = delay
        self.upserts_started = []

    async def query_active(self, conversation_id):
        await asyncio.sleep(self.delay)
        return await super().query_active(conversation_id)

    async def upsert(self, message):
        self.upserts_started.append(message.content)
        await asyncio.sleep(self.delay)
        await super().upsert(message)


def _service(client, store, bus, settings, conversation):
    controller = CompletionSessionController(client, store, bus, settings)
    return ConversationService(controller, ContextPolicy(settings), conversation, bus)


async def _seed(store, messages):
    for message in messages:
        await store.upsert(message)


def _pairs(messages):
    return [(m.role, m.content) for m in messages]


class TestSubmit:
    """Test suite for sending user messages"""

    @pytest.mark.asyncio
    async def test_user_then_assistant_are_persisted(self, store, bus, settings, conversation):
        client = FakeCompletionClient(chunks("Hi ", "there"))
        service = _service(client, store, bus, settings, conversation)

        outcome = await service.submit("hello")

        assert outcome.state == SessionState.COMPLETED
        assert _pairs(await service.messages()) == [
            ("user", "hello"),
            ("assistant", "Hi there"),
        ]
        assert store.writes[0].role == "user"
        assert not service.is_sending
        assert service.last_error is None

    @pytest.mark.asyncio
    async def test_window_uses_conversation_count_and_prompt(
        self, store, bus, settings, conversation
    ):
        await _seed(store, history(conversation.id, "u1", "a1", "u2", "a2"))
        client = FakeCompletionClient(chunks("ok"))
        service = _service(client, store, bus, settings, conversation)

        await service.submit("u3")

        sent, prompt = client.requests[0]
        assert _pairs(sent) == [("user", "u2"), ("assistant", "a2"), ("user", "u3")]
        assert prompt == "You are terse."

    @pytest.mark.asyncio
    async def test_zero_count_sends_only_new_message(self, store, bus, settings):
        conversation = Conversation(id="solo", title="Solo", context_message_count=0)
        await _seed(store, history("solo", "u1", "a1"))
        client = FakeCompletionClient(chunks("ok"))
        service = _service(client, store, bus, settings, conversation)

        await service.submit("only me")

        assert client.requests[0] == ([Message(role="user", content="only me")], None)

    @pytest.mark.asyncio
    async def test_selected_prompt_overrides_history(
        self, store, bus, settings, conversation
    ):
        await _seed(store, history(conversation.id, "u1", "a1"))
        client = FakeCompletionClient(chunks("Bonjour"))
        service = _service(client, store, bus, settings, conversation)
        translate = Conversation(id="t", title="Translate", prompt="Translate to French.")

        await service.select_prompt(translate)
        assert service.prompt_text == "Translate to French."
        outcome = await service.submit("Hello")

        assert client.requests[0] == (
            [Message(role="user", content="Hello")],
            "Translate to French.",
        )
        assert outcome.override is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_empty_text_is_rejected(self, store, bus, settings, conversation, text):
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)
        with pytest.raises(ValueError):
            await service.submit(text)
        assert store.writes == []

    @pytest.mark.asyncio
    async def test_busy_submit_persists_nothing(self, store, bus, settings, conversation):
        gate = asyncio.Event()
        client = FakeCompletionClient(chunks("slow") + [gate])
        service = _service(client, store, bus, settings, conversation)

        first = asyncio.create_task(service.submit("first"))
        await wait_until(lambda: service.state == SessionState.STREAMING)
        assert service.is_sending

        with pytest.raises(SessionBusyError):
            await service.submit("second")
        assert [m.content for m in store.writes if m.role == "user"] == ["first"]

        gate.set()
        assert (await first).content == "slow"

    @pytest.mark.asyncio
    async def test_submission_event_is_emitted(self, store, bus, settings, conversation):
        recorder = await EventRecorder().attach(
            bus, EventTypes.USER_MESSAGE_SUBMITTED, EventTypes.MESSAGES_CHANGED
        )
        service = _service(
            FakeCompletionClient(chunks("ok")), store, bus, settings, conversation
        )

        await service.submit("hi")

        submission = recorder.of(EventTypes.USER_MESSAGE_SUBMITTED)[0]
        assert submission.message.content == "hi"
        assert submission.override_title is None
        assert recorder.types()[-1] == EventTypes.MESSAGES_CHANGED


class TestErrorsAndRetry:
    """Test suite for failure reporting and retry"""

    @pytest.mark.asyncio
    async def test_failure_sets_error_and_retry_recovers(
        self, store, bus, settings, conversation
    ):
        failure = ProviderConnectionError("down")
        client = FakeCompletionClient(failure, chunks("recovered"))
        service = _service(client, store, bus, settings, conversation)

        outcome = await service.submit("hello")
        assert outcome.state == SessionState.FAILED
        assert service.last_error is failure
        assert _pairs(await service.messages()) == [("user", "hello")]

        retried = await service.retry()

        assert retried.content == "recovered"
        assert service.last_error is None
        assert client.requests[1] == client.requests[0]
        assert _pairs(await service.messages()) == [
            ("user", "hello"),
            ("assistant", "recovered"),
        ]

    @pytest.mark.asyncio
    async def test_retry_rebuilds_window_from_store(
        self, store, bus, settings, conversation
    ):
        """Without a recorded failure the last count+1 active turns are replayed"""
        await _seed(store, history(conversation.id, "u1", "a1", "u2"))
        client = FakeCompletionClient(chunks("a2"))
        service = _service(client, store, bus, settings, conversation)

        await service.retry()

        sent, prompt = client.requests[0]
        assert _pairs(sent) == [("user", "u1"), ("assistant", "a1"), ("user", "u2")]
        assert prompt == "You are terse."

    @pytest.mark.asyncio
    async def test_retry_requires_unanswered_user_turn(
        self, store, bus, settings, conversation
    ):
        await _seed(store, history(conversation.id, "u1", "a1"))
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)
        with pytest.raises(NoRetryAvailableError):
            await service.retry()

    @pytest.mark.asyncio
    async def test_clear_error_drops_recorded_failure(
        self, store, bus, settings, conversation
    ):
        client = FakeCompletionClient(ProviderConnectionError("down"))
        service = _service(client, store, bus, settings, conversation)
        await service.submit("hello")

        service.clear_error()

        assert service.last_error is None
        assert service.controller.last_failure(conversation.id) is None


class TestConversationManagement:
    """Test suite for switching, prompts, context count and deletion"""

    @pytest.mark.asyncio
    async def test_switch_cancels_in_flight_completion(
        self, store, bus, settings, conversation
    ):
        gate = asyncio.Event()
        client = FakeCompletionClient(chunks("part") + [gate, DeltaChunk(content="more")])
        service = _service(client, store, bus, settings, conversation)
        recorder = await EventRecorder().attach(bus, EventTypes.CONVERSATION_SWITCHED)
        other = Conversation(id="chat-2", title="Other")

        task = asyncio.create_task(service.submit("hi"))
        await wait_until(lambda: service.state == SessionState.STREAMING)
        await service.switch_conversation(other)
        gate.set()
        outcome = await task

        assert outcome.state == SessionState.CANCELLED
        assert service.conversation is other
        assert service.last_error is None
        assert recorder.of(EventTypes.CONVERSATION_SWITCHED)[0] == {
            "previous": "chat-1",
            "conversation_id": "chat-2",
        }

    @pytest.mark.asyncio
    async def test_switch_resets_selected_prompt(self, store, bus, settings, conversation):
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)
        await service.select_prompt(Conversation(id="t", title="T", prompt="p"))

        await service.switch_conversation(Conversation(id="x", title="X", prompt="own"))

        assert service.selected_prompt is None
        assert service.prompt_text == "own"

    def test_matching_prompts_in_main_conversation(self, store, bus, settings):
        main = Conversation(id="main", title="Main")
        service = _service(FakeCompletionClient(), store, bus, settings, main)
        candidates = [
            Conversation(id="1", title="Translate", prompt="Translate."),
            Conversation(id="2", title="Plain"),
        ]
        assert [c.id for c in service.matching_prompts(candidates, "/trans")] == ["1"]

    def test_no_prompt_shortcuts_outside_main(self, store, bus, settings, conversation):
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)
        candidates = [Conversation(id="1", title="Translate", prompt="Translate.")]
        assert service.matching_prompts(candidates, "/trans") == []

    @pytest.mark.asyncio
    async def test_set_context_count_on_regular_conversation(
        self, store, bus, settings, conversation
    ):
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)
        recorder = await EventRecorder().attach(bus, EventTypes.CONTEXT_COUNT_CHANGED)

        await service.set_context_count(5)

        assert service.context_count == 5
        assert service.conversation.context_message_count == 5
        assert conversation.context_message_count == 2
        assert recorder.of(EventTypes.CONTEXT_COUNT_CHANGED)[0]["count"] == 5

    @pytest.mark.asyncio
    async def test_set_context_count_on_main_updates_settings(self, store, bus, settings):
        main = Conversation(id="main", title="Main")
        service = _service(FakeCompletionClient(), store, bus, settings, main)

        await service.set_context_count(3)

        assert settings.main_context_messages == 3
        assert service.context_count == 3

    @pytest.mark.asyncio
    async def test_delete_message(self, store, bus, settings, conversation):
        seeded = history(conversation.id, "u1", "a1")
        await _seed(store, seeded)
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)

        await service.delete_message(seeded[0])

        assert _pairs(await service.messages()) == [("assistant", "a1")]
        assert seeded[0].is_active
        assert (await store.get(seeded[0].id)).removed_at > 0

    @pytest.mark.asyncio
    async def test_clean_messages_shares_one_timestamp(
        self, store, bus, settings, conversation
    ):
        seeded = history(conversation.id, "u1", "a1", "u2")
        await _seed(store, seeded)
        await _seed(store, history("elsewhere", "keep"))
        service = _service(FakeCompletionClient(), store, bus, settings, conversation)

        removed = await service.clean_messages()

        assert removed == 3
        assert await service.messages() == []
        stamps = {(await store.get(m.id)).removed_at for m in seeded}
        assert len(stamps) == 1 and stamps.pop() > 0
        assert len(await store.query_active("elsewhere")) == 1


class TestSubmissionRaces:
    """Test suite for requests arriving while a user turn is still being saved"""

    @pytest.fixture
    def slow_store(self):
        return SlowStore()

    @pytest.mark.asyncio
    async def test_switch_cancels_submit_before_it_reaches_the_client(
        self, slow_store, bus, settings, conversation
    ):
        client = FakeCompletionClient(chunks("Hello", " world"))
        service = _service(client, slow_store, bus, settings, conversation)

        task = asyncio.create_task(service.submit("hi"))
        await wait_until(lambda: service.is_sending)
        assert not service.controller.is_active(conversation.id)
        await service.switch_conversation(Conversation(id="chat-2", title="Other"))
        outcome = await task

        assert outcome.state == SessionState.CANCELLED
        assert client.requests == []
        assert _pairs(await slow_store.query_active(conversation.id)) == [("user", "hi")]
        assert not service.controller.is_active(conversation.id)

    @pytest.mark.asyncio
    async def test_cancel_while_user_turn_is_written(
        self, slow_store, bus, settings, conversation
    ):
        client = FakeCompletionClient(chunks("unused"))
        service = _service(client, slow_store, bus, settings, conversation)

        task = asyncio.create_task(service.submit("hi"))
        await wait_until(lambda: slow_store.upserts_started)
        assert service.cancel() is True
        outcome = await task

        assert outcome.state == SessionState.CANCELLED
        assert outcome.sent_messages == [Message(role="user", content="hi")]
        assert client.requests == []
        assert service.last_error is None

    @pytest.mark.asyncio
    async def test_submit_during_rebuilt_retry_persists_nothing(
        self, slow_store, bus, settings, conversation
    ):
        await slow_store.upsert(history(conversation.id, "unanswered")[0])
        client = FakeCompletionClient(chunks("answer"))
        service = _service(client, slow_store, bus, settings, conversation)

        retry = asyncio.create_task(service.retry())
        await wait_until(lambda: service.is_sending)
        with pytest.raises(SessionBusyError):
            await service.submit("new turn")

        assert [w.content for w in slow_store.writes if w.role == "user"] == [
            "unanswered"
        ]
        outcome = await retry
        assert outcome.content == "answer"
        assert _pairs(client.requests[0][0]) == [("user", "unanswered")]
