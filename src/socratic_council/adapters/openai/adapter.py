"""
OpenAI adapter implementation for Socratic Council.

This module streams chat completions through the OpenAI SDK. The same client
serves every OpenAI-compatible provider (Google, DeepSeek, Kimi) by pointing
``base_url`` at the provider's compatible endpoint.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI

from socratic_council.adapters.base.adapter import ChatTurn, StreamingCompletionService
from socratic_council.config import ProviderCredential
from socratic_council.protocol.message import ParticipantConfig, TokenUsage

# Model families that reject a custom temperature and take max_completion_tokens
REASONING_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def is_reasoning_model(model_id: str) -> bool:
    return model_id.startswith(REASONING_PREFIXES)


class OpenAICompatibleService(StreamingCompletionService):
    """Adapter for OpenAI and OpenAI-compatible chat completion endpoints."""

    def __init__(self, credential: ProviderCredential, client: Optional[AsyncOpenAI] = None, timeout: float = 120.0):
        self.credential = credential
        super().__init__()
        self.client = client or AsyncOpenAI(
            api_key=credential.api_key,
            base_url=credential.base_url,
            timeout=timeout,
        )

    @property
    def provider_name(self) -> str:
        return self.credential.provider

    def build_request(self, participant: ParticipantConfig, history: List[ChatTurn]) -> Dict[str, Any]:
        """Translate prompt turns into a streaming chat completion request."""
        request: Dict[str, Any] = {
            "model": participant.model,
            "messages": [{"role": turn.role, "content": turn.content} for turn in history],
            "stream": True,
            "stream_options": {"include_usage": True},
        }

        if self.credential.provider == "openai" and is_reasoning_model(participant.model):
            request["max_completion_tokens"] = participant.max_tokens
        else:
            request["max_tokens"] = participant.max_tokens
            request["temperature"] = participant.temperature

        return request

    async def _stream(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        usage: TokenUsage,
    ) -> AsyncIterator[str]:
        request = self.build_request(participant, history)
        stream = await self.client.chat.completions.create(**request)

        async for chunk in stream:
            # The usage block arrives on the final chunk, which has no choices
            if getattr(chunk, "usage", None):
                usage.input = chunk.usage.prompt_tokens or 0
                usage.output = chunk.usage.completion_tokens or 0
                details = getattr(chunk.usage, "completion_tokens_details", None)
                usage.reasoning = getattr(details, "reasoning_tokens", None) or 0

            if chunk.choices and chunk.choices[0].delta.content:
                yield chunk.choices[0].delta.content
