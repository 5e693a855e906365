"""
Memory for Socratic Council

Bounded per-participant conversational memory with engagement-debt tracking,
and the transcript store collaborator that receives finalized messages.
"""

from socratic_council.memory.base import TranscriptStore
from socratic_council.memory.conversation import (
    ConversationContext,
    ConversationMemoryManager,
    DebtReason,
    EngagementDebt,
    MemoryConfig,
    MemoryEntry,
)
from socratic_council.memory.inmemory import InMemoryTranscriptStore

__all__ = [
    "TranscriptStore",
    "InMemoryTranscriptStore",
    "ConversationContext",
    "ConversationMemoryManager",
    "DebtReason",
    "EngagementDebt",
    "MemoryConfig",
    "MemoryEntry",
]
