"""
Message Protocol for Socratic Council

This module defines the provider-neutral data model shared by every part of
the council: participant identities, the streaming message lifecycle and the
per-participant completion configuration.

A message is created as an empty streaming placeholder when a turn starts,
grows through ``append_chunk`` while the participant is generating, and is
finalized exactly once (content, error or empty-result marker). After that
only quote and reaction annotations may change.
"""

import re
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator

from socratic_council.errors import MessageFinalizedError, utc_now


class ParticipantId(str, Enum):
    """Identifiers of everyone who can author a message."""

    GEORGE = "george"
    CATHY = "cathy"
    GRACE = "grace"
    DOUGLAS = "douglas"
    KATE = "kate"
    # Reserved non-council authors
    SYSTEM = "system"
    USER = "user"
    TOOL = "tool"


# Fixed participant order, used for deterministic iteration and tie-breaks
COUNCIL_ORDER: List[ParticipantId] = [
    ParticipantId.GEORGE,
    ParticipantId.CATHY,
    ParticipantId.GRACE,
    ParticipantId.DOUGLAS,
    ParticipantId.KATE,
]

PARTICIPANT_NAMES: Dict[ParticipantId, str] = {
    ParticipantId.GEORGE: "George",
    ParticipantId.CATHY: "Cathy",
    ParticipantId.GRACE: "Grace",
    ParticipantId.DOUGLAS: "Douglas",
    ParticipantId.KATE: "Kate",
    ParticipantId.SYSTEM: "System",
    ParticipantId.USER: "User",
    ParticipantId.TOOL: "Tool",
}


def is_council(participant_id: ParticipantId) -> bool:
    """Whether the id belongs to one of the five council members."""
    return participant_id in COUNCIL_ORDER


def council_sorted(participants) -> List[ParticipantId]:
    """Return council participants in fixed order, dropping anyone else."""
    wanted = set(participants)
    return [pid for pid in COUNCIL_ORDER if pid in wanted]


def mentions_participant(content: str, participant_id: ParticipantId) -> bool:
    """Case-insensitive whole-word check for a participant's display name."""
    name = PARTICIPANT_NAMES.get(participant_id)
    if not name or not is_council(participant_id):
        return False
    return re.search(rf"\b{re.escape(name)}\b", content, re.IGNORECASE) is not None


def generate_message_id() -> str:
    return f"msg_{uuid4().hex[:12]}"


class MessageStatus(str, Enum):
    """Lifecycle states of a message."""

    STREAMING = "streaming"  # Placeholder, content still arriving
    COMPLETE = "complete"    # Finalized with content
    EMPTY = "empty"          # Finalized, service returned nothing
    ERROR = "error"          # Finalized with an error


class TokenUsage(BaseModel):
    """Token counts reported by a completion service."""

    input: int = Field(default=0, ge=0, description="Prompt tokens")
    output: int = Field(default=0, ge=0, description="Completion tokens")
    reasoning: int = Field(default=0, ge=0, description="Reasoning tokens, if reported")


class MessageMetadata(BaseModel):
    """Provider and annotation metadata attached to a message."""

    model: Optional[str] = Field(None, description="Model that produced the message")
    latency_ms: Optional[float] = Field(None, description="Wall-clock generation time")
    error: Optional[str] = Field(None, description="Error description if generation failed")
    timed_out: bool = Field(default=False, description="Whether an idle or hard timeout cut the stream")
    turn_number: Optional[int] = Field(None, description="Turn in which the message was produced")
    quoted_message_ids: List[str] = Field(default_factory=list, description="Messages this one quotes")
    reactions: Dict[str, List[ParticipantId]] = Field(
        default_factory=dict, description="Reaction type to the participants who reacted"
    )


class Message(BaseModel):
    """A single contribution to the council transcript."""

    id: str = Field(default_factory=generate_message_id, description="Unique identifier")
    participant_id: ParticipantId = Field(..., description="Author of the message")
    content: str = Field(default="", description="Text content")
    timestamp: datetime = Field(default_factory=utc_now, description="When the message was created")
    token_usage: Optional[TokenUsage] = Field(None, description="Token usage for generated messages")
    metadata: MessageMetadata = Field(default_factory=MessageMetadata, description="Additional metadata")
    status: MessageStatus = Field(default=MessageStatus.COMPLETE, description="Lifecycle state")

    @property
    def is_streaming(self) -> bool:
        return self.status == MessageStatus.STREAMING

    @property
    def has_content(self) -> bool:
        return bool(self.content.strip())

    def append_chunk(self, chunk: str) -> None:
        """Append streamed content to a placeholder."""
        if not self.is_streaming:
            raise MessageFinalizedError(f"Message {self.id} is already finalized")
        self.content += chunk

    def finalize(
        self,
        content: Optional[str] = None,
        token_usage: Optional[TokenUsage] = None,
        error: Optional[str] = None,
        timed_out: bool = False,
        latency_ms: Optional[float] = None,
    ) -> "Message":
        """
        Finalize a streaming placeholder. Allowed exactly once.

        Args:
            content: Final content; defaults to whatever was streamed
            token_usage: Reported token usage
            error: Error description, marks the message as failed
            timed_out: Whether the stream was cut by a timeout
            latency_ms: Generation latency

        Returns:
            The message itself
        """
        if not self.is_streaming:
            raise MessageFinalizedError(f"Message {self.id} is already finalized")

        if content is not None:
            self.content = content
        self.token_usage = token_usage
        self.metadata.error = error
        self.metadata.timed_out = timed_out
        self.metadata.latency_ms = latency_ms

        if error is not None and not self.has_content:
            self.status = MessageStatus.ERROR
        elif not self.has_content:
            self.status = MessageStatus.EMPTY
        else:
            self.status = MessageStatus.COMPLETE
        return self

    def add_reaction(self, reaction: str, participant_id: ParticipantId) -> bool:
        """Attach a reaction annotation; returns False if it already existed."""
        reactors = self.metadata.reactions.setdefault(reaction, [])
        if participant_id in reactors:
            return False
        reactors.append(participant_id)
        return True


class ParticipantConfig(BaseModel):
    """Completion configuration for one council member."""

    id: ParticipantId = Field(..., description="Council identifier")
    name: str = Field(..., description="Display name")
    provider: str = Field(..., description="Completion provider (e.g. 'openai', 'anthropic')")
    model: str = Field(..., description="Model identifier")
    system_prompt: str = Field(default="", description="Persona instructions")
    temperature: float = Field(default=0.7, description="Sampling temperature")
    max_tokens: int = Field(default=2048, description="Maximum completion tokens")

    @field_validator('name')
    def name_must_not_be_empty(cls, v):
        """Validate that the name is not empty."""
        if not v or not v.strip():
            raise ValueError("Participant name cannot be empty")
        return v.strip()

    @field_validator('id')
    def id_must_be_council(cls, v):
        if not is_council(v):
            raise ValueError(f"{v} is not a council participant")
        return v


def base_system_prompt(name: str) -> str:
    return (
        f"You are {name}, one of five members of a Socratic council discussing a topic "
        "in a live group chat with George, Cathy, Grace, Douglas, and Kate. "
        "Keep responses short (1-2 paragraphs), address a specific point from someone "
        "else by name, add one new claim or counterpoint, and end with one concrete question.\n"
        "If you quote a prior message, include @quote(MSG_ID) where the quote belongs. "
        "If you react, use @react(MSG_ID, REACTION) with one of: thumbs_up, heart, laugh, sparkle."
    )


DEFAULT_PARTICIPANTS: Dict[ParticipantId, ParticipantConfig] = {
    ParticipantId.GEORGE: ParticipantConfig(
        id=ParticipantId.GEORGE, name="George", provider="openai", model="gpt-5.2",
        system_prompt=base_system_prompt("George"), temperature=0.7,
    ),
    ParticipantId.CATHY: ParticipantConfig(
        id=ParticipantId.CATHY, name="Cathy", provider="anthropic", model="claude-opus-4-6",
        system_prompt=base_system_prompt("Cathy"), temperature=0.8,
    ),
    ParticipantId.GRACE: ParticipantConfig(
        id=ParticipantId.GRACE, name="Grace", provider="google", model="gemini-3-pro-preview",
        system_prompt=base_system_prompt("Grace"), temperature=0.9,
    ),
    ParticipantId.DOUGLAS: ParticipantConfig(
        id=ParticipantId.DOUGLAS, name="Douglas", provider="deepseek", model="deepseek-reasoner",
        system_prompt=base_system_prompt("Douglas"), temperature=0.6,
    ),
    ParticipantId.KATE: ParticipantConfig(
        id=ParticipantId.KATE, name="Kate", provider="kimi", model="kimi-k2.5",
        system_prompt=base_system_prompt("Kate"), temperature=0.7,
    ),
}


def create_placeholder(participant_id: ParticipantId, turn_number: int, model: Optional[str] = None) -> Message:
    """Create the empty streaming placeholder for a participant's turn."""
    return Message(
        participant_id=participant_id,
        status=MessageStatus.STREAMING,
        metadata=MessageMetadata(model=model, turn_number=turn_number),
    )


def create_system_message(content: str, timestamp: Optional[datetime] = None) -> Message:
    """
    Create a finalized system message (e.g. the discussion topic).

    Args:
        content: Text content of the system message
        timestamp: Optional explicit timestamp

    Returns:
        A system message
    """
    message = Message(participant_id=ParticipantId.SYSTEM, content=content)
    if timestamp is not None:
        message.timestamp = timestamp
    return message
