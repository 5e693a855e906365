"""
Provider routing for Socratic Council.

Dispatches each participant's request to the adapter for its provider,
creating adapters lazily from the binding registry.
"""

import logging
from typing import Dict, List, Optional

from socratic_council.adapters.anthropic.adapter import AnthropicService
from socratic_council.adapters.base.adapter import (
    ChatTurn,
    ChunkHandler,
    CompletionOptions,
    CompletionResult,
    CompletionService,
)
from socratic_council.adapters.base.cancellation import CancellationToken
from socratic_council.adapters.openai.adapter import OpenAICompatibleService
from socratic_council.config import BindingRegistry
from socratic_council.errors import MissingBindingError
from socratic_council.protocol.message import ParticipantConfig


class ProviderRouter(CompletionService):
    """Completion service that delegates to per-provider adapters."""

    def __init__(self, bindings: BindingRegistry, services: Optional[Dict[str, CompletionService]] = None):
        self.bindings = bindings
        self.services: Dict[str, CompletionService] = dict(services or {})
        self.logger = logging.getLogger("socratic_council.adapters.router")

    def service_for(self, provider: str) -> CompletionService:
        """
        Get or create the adapter for a provider.

        Raises:
            MissingBindingError: If the provider has no usable credential
        """
        if provider in self.services:
            return self.services[provider]

        credential = self.bindings.credentials.get(provider)
        if credential is None or not credential.is_usable:
            raise MissingBindingError(f"No usable credential for provider '{provider}'")

        if provider == "anthropic":
            service: CompletionService = AnthropicService(credential)
        else:
            service = OpenAICompatibleService(credential)

        self.services[provider] = service
        self.logger.info(f"Created {type(service).__name__} for {provider}")
        return service

    async def generate(
        self,
        participant: ParticipantConfig,
        history: List[ChatTurn],
        on_chunk: Optional[ChunkHandler] = None,
        token: Optional[CancellationToken] = None,
        options: Optional[CompletionOptions] = None,
    ) -> CompletionResult:
        try:
            service = self.service_for(participant.provider)
        except MissingBindingError as e:
            self.logger.warning(f"{participant.name}: {e}")
            return CompletionResult(success=False, error=str(e))

        return await service.generate(participant, history, on_chunk=on_chunk, token=token, options=options)
