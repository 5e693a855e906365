"""
Base adapter module for Socratic Council.

This module defines the completion-service contract, the cancellation tokens
passed into every request and the streaming base class that enforces timeouts.
"""

from socratic_council.adapters.base.adapter import (
    ChatTurn,
    ChunkHandler,
    CompletionOptions,
    CompletionResult,
    CompletionService,
    StreamingCompletionService,
    build_prompt,
)
from socratic_council.adapters.base.cancellation import CancellationRegistry, CancellationToken

__all__ = [
    "ChatTurn",
    "ChunkHandler",
    "CompletionOptions",
    "CompletionResult",
    "CompletionService",
    "StreamingCompletionService",
    "build_prompt",
    "CancellationRegistry",
    "CancellationToken",
]
