"""
Tests for the completion-service adapters.

This module contains tests for the streaming base class (timeouts and
cancellation), the OpenAI-compatible and Anthropic adapters, and the provider
router, verifying they correctly translate between council prompts and
provider-specific formats.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from socratic_council.adapters.anthropic.adapter import AnthropicService
from socratic_council.adapters.base.adapter import (
    ChatTurn,
    CompletionOptions,
    CompletionService,
    StreamingCompletionService,
    build_prompt,
)
from socratic_council.adapters.base.cancellation import CancellationRegistry, CancellationToken
from socratic_council.adapters.openai.adapter import OpenAICompatibleService, is_reasoning_model
from socratic_council.adapters.router import ProviderRouter
from socratic_council.config import BindingRegistry, ProviderCredential
from socratic_council.memory.conversation import ConversationMemoryManager
from socratic_council.orchestrator.streaming import ChunkCoalescer
from socratic_council.protocol.message import DEFAULT_PARTICIPANTS, Message, ParticipantId

GEORGE_CONFIG = DEFAULT_PARTICIPANTS[ParticipantId.GEORGE]
CATHY_CONFIG = DEFAULT_PARTICIPANTS[ParticipantId.CATHY]
DOUGLAS_CONFIG = DEFAULT_PARTICIPANTS[ParticipantId.DOUGLAS]

HISTORY = [
    ChatTurn(role="system", content="You are George."),
    ChatTurn(role="user", content="It is your turn, George."),
]


async def aiter_items(items):
    for item in items:
        yield item


class FakeStreamService(StreamingCompletionService):
    """Streaming service yielding canned chunks with optional delays."""

    def __init__(self, chunks, delay=0.0, stall_after=None, error=None):
        super().__init__()
        self.chunks = chunks
        self.delay = delay
        self.stall_after = stall_after
        self.error = error

    async def _stream(self, participant, history, usage):
        for i, chunk in enumerate(self.chunks):
            if i == self.stall_after:
                await asyncio.sleep(10)
            if self.delay:
                await asyncio.sleep(self.delay)
            yield chunk
        if self.error is not None:
            raise self.error
        usage.input = 10
        usage.output = len(self.chunks)


class TestStreamingCompletionService:
    """Tests for timeouts and cancellation in the streaming base class."""

    @pytest.mark.asyncio
    async def test_streams_chunks_in_order(self):
        received = []
        service = FakeStreamService(["Hello", " ", "council"])

        result = await service.generate(GEORGE_CONFIG, HISTORY, on_chunk=received.append)

        assert result.success
        assert result.content == "Hello council"
        assert received == ["Hello", " ", "council"]
        assert result.token_usage.input == 10
        assert result.token_usage.output == 3
        assert not result.timed_out and not result.cancelled

    @pytest.mark.asyncio
    async def test_idle_timeout_keeps_partial_content(self):
        service = FakeStreamService(["first", "second"], stall_after=1)
        options = CompletionOptions(idle_timeout_ms=50, hard_timeout_ms=5000)

        result = await service.generate(GEORGE_CONFIG, HISTORY, options=options)

        assert result.timed_out
        assert not result.success
        assert result.content == "first"
        assert "idle timeout" in result.error

    @pytest.mark.asyncio
    async def test_hard_timeout(self):
        service = FakeStreamService(["x"] * 50, delay=0.02)
        options = CompletionOptions(idle_timeout_ms=1000, hard_timeout_ms=100)

        result = await service.generate(GEORGE_CONFIG, HISTORY, options=options)

        assert result.timed_out
        assert "hard timeout" in result.error
        assert 0 < len(result.content) < 50

    @pytest.mark.asyncio
    async def test_cancellation_interrupts_stream(self):
        service = FakeStreamService(["first", "second"], stall_after=1)
        token = CancellationToken("1:msg")
        asyncio.get_running_loop().call_later(0.05, token.cancel, "paused")

        result = await service.generate(GEORGE_CONFIG, HISTORY, token=token)

        assert result.cancelled
        assert not result.timed_out
        assert result.content == "first"
        assert "paused" in result.error

    @pytest.mark.asyncio
    async def test_already_cancelled_token(self):
        token = CancellationToken("1:msg")
        token.cancel("stopped")

        result = await FakeStreamService(["never"]).generate(GEORGE_CONFIG, HISTORY, token=token)

        assert result.cancelled
        assert result.content == ""

    @pytest.mark.asyncio
    async def test_provider_error_becomes_failure(self):
        service = FakeStreamService(["partial"], error=RuntimeError("boom"))

        result = await service.generate(GEORGE_CONFIG, HISTORY)

        assert not result.success
        assert result.error == "RuntimeError: boom"
        assert result.content == "partial"


class TestCancellationRegistry:
    """Tests for per-turn request tokens."""

    def test_cancel_all(self):
        registry = CancellationRegistry()
        first = registry.register("1:a")
        second = registry.register("1:b")
        registry.release("1:b")

        assert registry.cancel_all("paused") == 1
        assert first.cancelled and first.reason == "paused"
        assert not second.cancelled
        assert len(registry) == 0

    def test_cancel_is_one_shot(self):
        token = CancellationToken("k")
        token.cancel("paused")
        token.cancel("stopped")
        assert token.reason == "paused"


def test_chunk_coalescer_bounds_flushes():
    now = [0.0]
    flushed = []
    coalescer = ChunkCoalescer(55, flushed.append, clock=lambda: now[0])

    coalescer.push("a")
    now[0] = 0.01
    coalescer.push("b")
    now[0] = 0.02
    coalescer.push("c")
    now[0] = 0.1
    coalescer.push("d")
    coalescer.flush()
    now[0] = 0.11
    coalescer.push("e")
    coalescer.discard()
    coalescer.flush()

    assert flushed == ["a", "bcd"]


@pytest.mark.asyncio
async def test_chunk_coalescer_flushes_stalled_tail():
    flushed = []
    coalescer = ChunkCoalescer(55, flushed.append)

    coalescer.push("a")
    coalescer.push("b")
    assert flushed == ["a"]

    # No further chunks arrive; the buffered tail still goes out after the interval
    await asyncio.sleep(0.2)
    assert flushed == ["a", "b"]

    coalescer.push("c")
    coalescer.push("d")
    coalescer.discard()
    await asyncio.sleep(0.2)
    assert flushed == ["a", "b", "c"]


def test_build_prompt():
    memory = ConversationMemoryManager()
    memory.set_topic("Is nuclear power necessary?")
    memory.add_message(Message(participant_id=ParticipantId.GEORGE, content="Kate, where's your evidence?"))
    kate = DEFAULT_PARTICIPANTS[ParticipantId.KATE]

    turns = build_prompt(kate, memory.build_context(ParticipantId.KATE), memory)

    assert [t.role for t in turns] == ["system", "user"]
    assert turns[0].content.startswith(kate.system_prompt)
    assert "Discussion topic: Is nuclear power necessary?" in turns[0].content
    assert "Kate, where's your evidence?" in turns[1].content
    assert turns[1].content.endswith("It is your turn, Kate. Respond to the discussion so far.")


def make_openai_chunk(content=None, usage=None):
    """Helper function to create a streamed chat completion chunk."""
    chunk = MagicMock()
    chunk.choices = [MagicMock(delta=MagicMock(content=content))] if content is not None else []
    chunk.usage = usage
    return chunk


class TestOpenAICompatibleService:
    """Tests for the OpenAI-compatible adapter."""

    @patch('socratic_council.adapters.openai.adapter.AsyncOpenAI')
    def test_client_uses_credential(self, mock_openai):
        credential = ProviderCredential(provider="deepseek", api_key="test-key", base_url="https://api.deepseek.com/v1")
        service = OpenAICompatibleService(credential)

        mock_openai.assert_called_once_with(api_key="test-key", base_url="https://api.deepseek.com/v1", timeout=120.0)
        assert service.provider_name == "deepseek"
        assert service.logger.name == "socratic_council.adapters.deepseek"

    def test_reasoning_model_request(self):
        service = OpenAICompatibleService(ProviderCredential(provider="openai", api_key="k"), client=MagicMock())
        request = service.build_request(GEORGE_CONFIG, HISTORY)

        assert request["model"] == "gpt-5.2"
        assert request["stream"] is True
        assert request["stream_options"] == {"include_usage": True}
        assert request["max_completion_tokens"] == GEORGE_CONFIG.max_tokens
        assert "temperature" not in request
        assert request["messages"] == [
            {"role": "system", "content": "You are George."},
            {"role": "user", "content": "It is your turn, George."},
        ]

    def test_compatible_provider_request(self):
        service = OpenAICompatibleService(ProviderCredential(provider="deepseek", api_key="k"), client=MagicMock())
        request = service.build_request(DOUGLAS_CONFIG, HISTORY)

        assert request["max_tokens"] == DOUGLAS_CONFIG.max_tokens
        assert request["temperature"] == DOUGLAS_CONFIG.temperature
        assert "max_completion_tokens" not in request

    def test_is_reasoning_model(self):
        assert is_reasoning_model("gpt-5.2")
        assert is_reasoning_model("o4-mini")
        assert not is_reasoning_model("gpt-4o")

    @pytest.mark.asyncio
    async def test_generate_streams_and_reads_usage(self):
        usage = MagicMock(
            prompt_tokens=50,
            completion_tokens=20,
            completion_tokens_details=MagicMock(reasoning_tokens=5),
        )
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(return_value=aiter_items([
            make_openai_chunk("Reciprocity "),
            make_openai_chunk(""),
            make_openai_chunk("matters."),
            make_openai_chunk(usage=usage),
        ]))
        service = OpenAICompatibleService(ProviderCredential(provider="openai", api_key="k"), client=mock_client)
        received = []

        result = await service.generate(GEORGE_CONFIG, HISTORY, on_chunk=received.append)

        assert result.success
        assert result.content == "Reciprocity matters."
        assert received == ["Reciprocity ", "matters."]
        assert result.token_usage.input == 50
        assert result.token_usage.output == 20
        assert result.token_usage.reasoning == 5
        mock_client.chat.completions.create.assert_called_once()
        assert mock_client.chat.completions.create.call_args.kwargs["model"] == "gpt-5.2"

    @pytest.mark.asyncio
    async def test_api_error_is_reported(self):
        mock_client = MagicMock()
        mock_client.chat.completions.create = AsyncMock(side_effect=RuntimeError("rate limited"))
        service = OpenAICompatibleService(ProviderCredential(provider="openai", api_key="k"), client=mock_client)

        result = await service.generate(GEORGE_CONFIG, HISTORY)

        assert not result.success
        assert result.error == "RuntimeError: rate limited"


class FakeAnthropicStream:
    """Stand-in for the SDK's message stream context manager."""

    def __init__(self, texts, input_tokens=40, output_tokens=12):
        self.texts = texts
        self.final = MagicMock(usage=MagicMock(input_tokens=input_tokens, output_tokens=output_tokens))

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    @property
    def text_stream(self):
        return aiter_items(self.texts)

    async def get_final_message(self):
        return self.final


class TestAnthropicService:
    """Tests for the Anthropic adapter."""

    def make_service(self, client=None):
        return AnthropicService(ProviderCredential(provider="anthropic", api_key="k"), client=client or MagicMock())

    def test_system_turns_become_system_param(self):
        request = self.make_service().build_request(CATHY_CONFIG, HISTORY)

        assert request["system"] == "You are George."
        assert request["messages"] == [{"role": "user", "content": "It is your turn, George."}]
        assert request["model"] == "claude-opus-4-6"
        assert request["max_tokens"] == CATHY_CONFIG.max_tokens
        assert request["temperature"] == CATHY_CONFIG.temperature

    def test_roles_are_normalized(self):
        history = [
            ChatTurn(role="system", content="Persona"),
            ChatTurn(role="system", content="Topic"),
            ChatTurn(role="assistant", content="Earlier reply"),
            ChatTurn(role="user", content="First"),
            ChatTurn(role="user", content="Second"),
        ]
        request = self.make_service().build_request(CATHY_CONFIG, history)

        assert request["system"] == "Persona\n\nTopic"
        assert request["messages"] == [
            {"role": "user", "content": "Begin."},
            {"role": "assistant", "content": "Earlier reply"},
            {"role": "user", "content": "First\n\nSecond"},
        ]

    @pytest.mark.asyncio
    async def test_generate_streams_and_reads_usage(self):
        mock_client = MagicMock()
        mock_client.messages.stream = MagicMock(return_value=FakeAnthropicStream(["Ayni is ", "reciprocity."]))
        received = []

        result = await self.make_service(mock_client).generate(CATHY_CONFIG, HISTORY, on_chunk=received.append)

        assert result.success
        assert result.content == "Ayni is reciprocity."
        assert received == ["Ayni is ", "reciprocity."]
        assert result.token_usage.input == 40
        assert result.token_usage.output == 12
        assert mock_client.messages.stream.call_args.kwargs["system"] == "You are George."


class TestProviderRouter:
    """Tests for per-provider dispatch."""

    @pytest.mark.asyncio
    async def test_missing_binding_is_a_failed_result(self):
        router = ProviderRouter(BindingRegistry())

        result = await router.generate(GEORGE_CONFIG, HISTORY)

        assert not result.success
        assert "openai" in result.error

    @pytest.mark.asyncio
    async def test_delegates_to_registered_service(self):
        delegate = MagicMock(spec=CompletionService)
        delegate.generate = AsyncMock(return_value=MagicMock(success=True))
        router = ProviderRouter(BindingRegistry(), services={"openai": delegate})

        await router.generate(GEORGE_CONFIG, HISTORY)

        delegate.generate.assert_awaited_once()
        assert delegate.generate.call_args.args[0] is GEORGE_CONFIG

    @patch('socratic_council.adapters.openai.adapter.AsyncOpenAI')
    @patch('socratic_council.adapters.anthropic.adapter.anthropic.AsyncAnthropic')
    def test_creates_adapters_lazily(self, mock_anthropic, mock_openai):
        bindings = BindingRegistry.from_env({"GOOGLE_API_KEY": "g-key", "ANTHROPIC_API_KEY": "a-key"})
        router = ProviderRouter(bindings)

        google = router.service_for("google")
        assert isinstance(google, OpenAICompatibleService)
        assert mock_openai.call_args.kwargs["base_url"] == "https://generativelanguage.googleapis.com/v1beta/openai/"
        assert router.service_for("google") is google

        assert isinstance(router.service_for("anthropic"), AnthropicService)
        mock_anthropic.assert_called_once()
