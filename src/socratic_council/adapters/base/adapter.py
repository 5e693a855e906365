"""
Base completion-service interface for Socratic Council.

This module defines the contract every provider adapter implements, plus a
streaming base class that enforces idle and hard timeouts and cooperative
cancellation uniformly, so provider adapters only have to yield text chunks.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, List, Optional

from pydantic import BaseModel, Field

from socratic_council.adapters.base.cancellation import CancellationToken
from socratic_council.errors import RequestCancelledError, RequestTimeoutError
from socratic_council.memory.conversation import ConversationContext, ConversationMemoryManager
from socratic_council.protocol.message import ParticipantConfig, TokenUsage

ChunkHandler = Callable[[str], None]


class CompletionOptions(BaseModel):
    """Per-request timeouts."""

    idle_timeout_ms: int = Field(default=60000, gt=0, description="Max silence between chunks")
    hard_timeout_ms: int = Field(default=90000, gt=0, description="Max total duration")


class CompletionResult(BaseModel):
    """Outcome of one completion request."""

    content: str = ""
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: float = 0.0
    success: bool = True
    error: Optional[str] = None
    timed_out: bool = False
    cancelled: bool = False


class ChatTurn(BaseModel):
    """A provider-neutral prompt turn."""

    role: str = Field(..., description="'system', 'user' or 'assistant'")
    content: str


class CompletionService(ABC):
    """Base interface for completion services."""

    @abstractmethod
    async def generate(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        on_chunk: Optional[ChunkHandler] = None,
        token: Optional[CancellationToken] = None,
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        """
        Produce a completion for a participant.

        Implementations must call ``on_chunk`` incrementally, honour ``token``
        and enforce both timeout classes. Failures are reported through the
        result, never raised.
        """
        pass


class StreamingCompletionService(CompletionService):
    """
    Completion service built on a provider chunk stream.

    Subclasses implement ``_stream``, an async generator of text chunks that
    fills in ``usage`` as the provider reports it.
    """

    def __init__(self):
        self.logger = logging.getLogger(f"socratic_council.adapters.{self.provider_name}")

    @property
    def provider_name(self) -> str:
        return "base"

    @abstractmethod
    def _stream(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        usage: TokenUsage,
    ) -> AsyncIterator[str]:
        """Yield text chunks from the provider."""
        pass

    async def generate(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        on_chunk: Optional[ChunkHandler] = None,
        token: Optional[CancellationToken] = None,
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        options = options or CompletionOptions()
        usage = TokenUsage()
        parts: List[str] = []
        start_time = time.time()

        loop = asyncio.get_running_loop()
        deadline = loop.time() + options.hard_timeout_ms / 1000
        idle_timeout = options.idle_timeout_ms / 1000

        stream = self._stream(participant, history, usage).__aiter__()
        cancel_task = asyncio.ensure_future(token.wait()) if token is not None else None

        def result(**kwargs) -> CompletionResult:
            return CompletionResult(
                content="".join(parts),
                token_usage=usage,
                latency_ms=(time.time() - start_time) * 1000,
                **kwargs,
            )

        try:
            while True:
                if token is not None:
                    token.raise_if_cancelled()

                remaining = deadline - loop.time()
                if remaining <= 0:
                    raise self._timeout_error(participant, idle=False, limit_ms=options.hard_timeout_ms)

                wait_for = min(idle_timeout, remaining)
                next_task = asyncio.ensure_future(stream.__anext__())
                waiters = {next_task} if cancel_task is None else {next_task, cancel_task}
                done, _ = await asyncio.wait(waiters, timeout=wait_for, return_when=asyncio.FIRST_COMPLETED)

                if next_task not in done:
                    await self._abandon(next_task)
                    if cancel_task is not None and cancel_task in done:
                        token.raise_if_cancelled()
                    if wait_for < idle_timeout:
                        raise self._timeout_error(participant, idle=False, limit_ms=options.hard_timeout_ms)
                    raise self._timeout_error(participant, idle=True, limit_ms=options.idle_timeout_ms)

                try:
                    chunk = next_task.result()
                except StopAsyncIteration:
                    break

                if chunk:
                    parts.append(chunk)
                    if on_chunk is not None:
                        on_chunk(chunk)

            return result(success=True)

        except RequestCancelledError as e:
            self.logger.debug(str(e))
            return result(success=False, cancelled=True, error=str(e))

        except RequestTimeoutError as e:
            self.logger.warning(str(e))
            return result(success=False, timed_out=True, error=str(e))

        except Exception as e:
            self.logger.error(f"{participant.name} ({participant.model}) failed: {e}")
            return result(success=False, error=f"{type(e).__name__}: {e}")

        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            await self._close(stream)

    @staticmethod
    def _timeout_error(participant: ParticipantConfig, idle: bool, limit_ms: int) -> RequestTimeoutError:
        kind = "idle" if idle else "hard"
        return RequestTimeoutError(
            f"{participant.name} hit the {kind} timeout ({limit_ms}ms)",
            participant_id=participant.id.value,
            idle=idle,
        )

    @staticmethod
    async def _abandon(task: "asyncio.Future") -> None:
        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled():
            task.exception()

    async def _close(self, stream) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as e:
            self.logger.debug(f"Error closing {self.provider_name} stream: {e}")


def build_prompt(
    participant: ParticipantConfig,
    context: ConversationContext,
    memory: ConversationMemoryManager,
) -> List[ChatTurn]:
    """
    Render a participant's context into prompt turns.

    Whispers never appear here; only the memory view and the topic do.
    """
    system = participant.system_prompt
    if context.topic_thread:
        system = f"{system}\n\nDiscussion topic: {context.topic_thread}"

    body = memory.format_for_prompt(context)
    instruction = f"It is your turn, {participant.name}. Respond to the discussion so far."
    return [
        ChatTurn(role="system", content=system),
        ChatTurn(role="user", content=f"{body}\n{instruction}" if body else instruction),
    ]
