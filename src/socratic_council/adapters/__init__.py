"""
Completion-service adapters for Socratic Council

Provider adapters translate the provider-neutral prompt into each SDK's
request format and stream text back with timeouts and cancellation applied.
"""

from socratic_council.adapters.base import (
    CancellationRegistry,
    CancellationToken,
    ChatTurn,
    CompletionOptions,
    CompletionResult,
    CompletionService,
    StreamingCompletionService,
    build_prompt,
)
from socratic_council.adapters.router import ProviderRouter

__all__ = [
    "CancellationRegistry",
    "CancellationToken",
    "ChatTurn",
    "CompletionOptions",
    "CompletionResult",
    "CompletionService",
    "StreamingCompletionService",
    "build_prompt",
    "ProviderRouter",
]
