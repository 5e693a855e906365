"""
Anthropic adapter implementation for Socratic Council.

This module streams Claude messages through the Anthropic SDK, translating
provider-neutral prompt turns into Anthropic's system-plus-messages format.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic

from socratic_council.adapters.base.adapter import ChatTurn, StreamingCompletionService
from socratic_council.config import ProviderCredential
from socratic_council.protocol.message import ParticipantConfig, TokenUsage


class AnthropicService(StreamingCompletionService):
    """Adapter for Anthropic Claude models."""

    def __init__(
        self,
        credential: ProviderCredential,
        client: Optional[anthropic.AsyncAnthropic] = None,
        timeout: float = 120.0,
    ):
        self.credential = credential
        super().__init__()
        self.client = client or anthropic.AsyncAnthropic(
            api_key=credential.api_key,
            base_url=credential.base_url,
            timeout=timeout,
        )

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def build_request(self, participant: ParticipantConfig, history: List[ChatTurn]) -> Dict[str, Any]:
        """
        Convert prompt turns to Anthropic's format.

        System turns are folded into the ``system`` parameter; consecutive
        turns with the same role are merged since Anthropic requires
        alternating roles starting with the user.
        """
        system_parts = [turn.content for turn in history if turn.role == "system"]
        messages: List[Dict[str, str]] = []

        for turn in history:
            if turn.role == "system":
                continue
            role = "assistant" if turn.role == "assistant" else "user"
            if messages and messages[-1]["role"] == role:
                messages[-1]["content"] += "\n\n" + turn.content
            else:
                messages.append({"role": role, "content": turn.content})

        if not messages or messages[0]["role"] != "user":
            messages.insert(0, {"role": "user", "content": "Begin."})

        request: Dict[str, Any] = {
            "model": participant.model,
            "messages": messages,
            "max_tokens": participant.max_tokens,
            "temperature": participant.temperature,
        }
        if system_parts:
            request["system"] = "\n\n".join(system_parts)
        return request

    async def _stream(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        usage: TokenUsage,
    ) -> AsyncIterator[str]:
        request = self.build_request(participant, history)

        async with self.client.messages.stream(**request) as stream:
            async for text in stream.text_stream:
                if text:
                    yield text

            final = await stream.get_final_message()
            usage.input = final.usage.input_tokens or 0
            usage.output = final.usage.output_tokens or 0
