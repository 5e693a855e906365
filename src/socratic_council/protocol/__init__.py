"""
Protocol layer for Socratic Council

Provider-neutral message model, participant identities and inline action
markers shared by every component.
"""

from socratic_council.protocol.message import (
    COUNCIL_ORDER,
    DEFAULT_PARTICIPANTS,
    PARTICIPANT_NAMES,
    Message,
    MessageMetadata,
    MessageStatus,
    ParticipantConfig,
    ParticipantId,
    TokenUsage,
    create_placeholder,
    create_system_message,
    is_council,
    mentions_participant,
)
from socratic_council.protocol.actions import extract_actions, REACTION_CATALOG

__all__ = [
    "COUNCIL_ORDER",
    "DEFAULT_PARTICIPANTS",
    "PARTICIPANT_NAMES",
    "Message",
    "MessageMetadata",
    "MessageStatus",
    "ParticipantConfig",
    "ParticipantId",
    "TokenUsage",
    "create_placeholder",
    "create_system_message",
    "is_council",
    "mentions_participant",
    "extract_actions",
    "REACTION_CATALOG",
]
