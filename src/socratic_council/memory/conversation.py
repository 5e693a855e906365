"""
Conversation Memory Manager for Socratic Council.

Keeps the full list of finalized messages and hands each participant a
bounded, priority-ranked view of it: the most recent 70% of the window
verbatim plus the 30% of older messages most relevant to that participant.
It also tracks engagement debts, the outstanding obligations a participant
has to answer a question, challenge or mention addressed to them by name.
"""

import logging
import re
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from socratic_council.protocol.message import (
    COUNCIL_ORDER,
    PARTICIPANT_NAMES,
    Message,
    ParticipantId,
    is_council,
    mentions_participant,
)

QUESTION_PATTERN = re.compile(
    r"\b(what|how|why|when|where|who|which|would|could|should|do you|does|is it|are you)\b",
    re.IGNORECASE,
)

RECENT_SHARE = 0.7
MENTION_RELEVANCE = 50
UNANSWERED_RELEVANCE = 30
ENGAGEMENT_RELEVANCE_WEIGHT = 0.3


class DebtReason(str, Enum):
    """Why a participant owes a response."""

    DIRECT_QUESTION = "direct_question"
    MENTIONED_BY_NAME = "mentioned_by_name"
    CHALLENGED = "challenged"


DEBT_PRIORITIES: Dict[DebtReason, int] = {
    DebtReason.DIRECT_QUESTION: 90,
    DebtReason.CHALLENGED: 85,
    DebtReason.MENTIONED_BY_NAME: 60,
}


class EngagementDebt(BaseModel):
    """An outstanding obligation for ``debtor`` to respond to ``creditor``."""

    debtor: ParticipantId = Field(..., description="Participant who owes engagement")
    creditor: ParticipantId = Field(..., description="Participant who made the unanswered point")
    message_id: str = Field(..., description="Message that needs a response")
    reason: DebtReason = Field(..., description="Why the debt exists")
    priority: int = Field(..., ge=0, le=100, description="Urgency, higher is more urgent")


class MemoryEntry(BaseModel):
    """A stored message plus the engagement it has attracted."""

    message: Message
    quoted_by: List[ParticipantId] = Field(default_factory=list)
    reacted_by: Dict[str, List[ParticipantId]] = Field(default_factory=dict)
    engagement_score: float = Field(default=0.0)

    def recompute_engagement(self) -> float:
        """Engagement = min(100, 15 per quoter + 5 per reaction)."""
        reaction_count = sum(len(reactors) for reactors in self.reacted_by.values())
        self.engagement_score = float(min(100, 15 * len(self.quoted_by) + 5 * reaction_count))
        return self.engagement_score


class MemoryConfig(BaseModel):
    """Configuration for the conversation memory."""

    window_size: int = Field(default=20, ge=1, description="Messages per participant context")
    prioritize_mentions: bool = Field(default=True, description="Boost older messages that mention the reader")
    track_engagement_debt: bool = Field(default=True, description="Whether to track engagement debts")


class ConversationContext(BaseModel):
    """The view of the conversation handed to one participant."""

    recent_messages: List[MemoryEntry] = Field(default_factory=list)
    engagement_debts: List[EngagementDebt] = Field(default_factory=list)
    topic_thread: str = Field(default="")
    summary: Optional[str] = Field(None, description="Placeholder summary of elided messages")
    speaking_counts: Dict[ParticipantId, int] = Field(default_factory=dict)


def contains_direct_question(content: str) -> bool:
    return "?" in content or QUESTION_PATTERN.search(content) is not None


def contains_challenge(content: str, target: ParticipantId) -> bool:
    name = re.escape(PARTICIPANT_NAMES[target])
    patterns = (
        rf"disagree\s+with\s+{name}",
        rf"{name}(?:'s)?\s+(?:argument|point|claim).*(?:weak|wrong|flawed)",
        rf"challenge\s+{name}",
        rf"{name}.*mistaken",
    )
    return any(re.search(p, content, re.IGNORECASE) for p in patterns)


class ConversationMemoryManager:
    """
    Bounded, per-participant conversational memory with debt bookkeeping.

    The manager is owned by the session controller and only mutated through
    ``add_message``, ``record_quote``, ``record_reaction`` and ``reset``.
    """

    def __init__(self, config: Optional[MemoryConfig] = None):
        self.config = config or MemoryConfig()
        self._entries: List[MemoryEntry] = []
        self._index: Dict[str, MemoryEntry] = {}
        self._debts: List[EngagementDebt] = []
        self._speaking_counts: Dict[ParticipantId, int] = {pid: 0 for pid in COUNCIL_ORDER}
        self.topic = ""
        self.logger = logging.getLogger("socratic_council.memory")

    def set_topic(self, topic: str) -> None:
        self.topic = topic

    def __len__(self) -> int:
        return len(self._entries)

    def messages(self) -> List[Message]:
        """All stored messages in insertion order."""
        return [entry.message for entry in self._entries]

    def get_entry(self, message_id: str) -> Optional[MemoryEntry]:
        return self._index.get(message_id)

    def add_message(self, message: Message) -> List[EngagementDebt]:
        """
        Store a finalized message and update engagement bookkeeping.

        Args:
            message: The finalized message

        Returns:
            Engagement debts created by this message
        """
        entry = MemoryEntry(message=message)
        self._entries.append(entry)
        self._index[message.id] = entry

        if is_council(message.participant_id):
            self._speaking_counts[message.participant_id] += 1

        created: List[EngagementDebt] = []
        if self.config.track_engagement_debt:
            created = self._update_engagement_debts(message)

        for quoted_id in message.metadata.quoted_message_ids:
            self.record_quote(quoted_id, message.participant_id)

        return created

    def record_quote(self, message_id: str, quoting: ParticipantId) -> bool:
        """
        Record that ``quoting`` quoted ``message_id``.

        Clears exactly the debt the quoting participant owed for that message.
        """
        entry = self._index.get(message_id)
        if entry is None or quoting in entry.quoted_by:
            return False

        entry.quoted_by.append(quoting)
        entry.recompute_engagement()
        self._clear_engagement_debt(quoting, entry.message.participant_id, message_id)
        return True

    def record_reaction(self, message_id: str, reacting: ParticipantId, reaction: str) -> bool:
        """Record a reaction annotation on a stored message."""
        entry = self._index.get(message_id)
        if entry is None:
            return False

        reactors = entry.reacted_by.setdefault(reaction, [])
        if reacting in reactors:
            return False
        reactors.append(reacting)
        entry.message.add_reaction(reaction, reacting)
        entry.recompute_engagement()
        return True

    def _update_engagement_debts(self, message: Message) -> List[EngagementDebt]:
        speaker = message.participant_id
        if not is_council(speaker):
            return []

        created = []
        for target in COUNCIL_ORDER:
            if target == speaker or not mentions_participant(message.content, target):
                continue

            if contains_direct_question(message.content):
                reason = DebtReason.DIRECT_QUESTION
            elif contains_challenge(message.content, target):
                reason = DebtReason.CHALLENGED
            else:
                reason = DebtReason.MENTIONED_BY_NAME

            if any(d.debtor == target and d.message_id == message.id for d in self._debts):
                continue

            debt = EngagementDebt(
                debtor=target,
                creditor=speaker,
                message_id=message.id,
                reason=reason,
                priority=DEBT_PRIORITIES[reason],
            )
            self._debts.append(debt)
            created.append(debt)

        return created

    def _clear_engagement_debt(self, debtor: ParticipantId, creditor: ParticipantId, message_id: str) -> None:
        before = len(self._debts)
        self._debts = [
            d for d in self._debts
            if not (d.debtor == debtor and d.creditor == creditor and d.message_id == message_id)
        ]
        if len(self._debts) != before:
            self.logger.debug(f"{debtor.value} settled debt to {creditor.value} for {message_id}")

    def get_engagement_debts(self, participant_id: ParticipantId) -> List[EngagementDebt]:
        """Debts owed by a participant, most urgent first."""
        owed = [d for d in self._debts if d.debtor == participant_id]
        return sorted(owed, key=lambda d: d.priority, reverse=True)

    def all_debts(self) -> List[EngagementDebt]:
        return list(self._debts)

    def speaking_counts(self) -> Dict[ParticipantId, int]:
        return dict(self._speaking_counts)

    def build_context(self, participant_id: ParticipantId) -> ConversationContext:
        """
        Build the bounded conversation view for a participant.

        Args:
            participant_id: The participant the context is for

        Returns:
            Selected messages, outstanding debts and the topic thread
        """
        window = self.config.window_size
        if len(self._entries) <= window:
            selected = list(self._entries)
        else:
            selected = self._select_relevant(participant_id, window)

        return ConversationContext(
            recent_messages=selected,
            engagement_debts=self.get_engagement_debts(participant_id),
            topic_thread=self.topic,
            summary=self._summary_placeholder(),
            speaking_counts=self.speaking_counts(),
        )

    def _select_relevant(self, participant_id: ParticipantId, window: int) -> List[MemoryEntry]:
        recent_count = int(window * RECENT_SHARE)
        priority_count = window - recent_count

        split = len(self._entries) - recent_count
        recent = self._entries[split:]
        older = self._entries[:split]

        if not older or priority_count == 0:
            return list(recent)

        scored = []
        for index, entry in enumerate(older):
            scored.append((self._relevance(participant_id, index, entry), index, entry))

        # Highest relevance first, earlier messages win ties
        scored.sort(key=lambda item: (-item[0], item[1]))
        chosen = [entry for _, _, entry in scored[:priority_count]]

        combined = chosen + list(recent)
        combined.sort(key=lambda e: e.message.timestamp)
        return combined

    def _relevance(self, participant_id: ParticipantId, index: int, entry: MemoryEntry) -> float:
        score = 0.0
        author = entry.message.participant_id

        if self.config.prioritize_mentions and mentions_participant(entry.message.content, participant_id):
            score += MENTION_RELEVANCE

        if is_council(author) and not self._has_quoted_author_since(participant_id, index, author):
            score += UNANSWERED_RELEVANCE

        score += entry.engagement_score * ENGAGEMENT_RELEVANCE_WEIGHT
        return score

    def _has_quoted_author_since(self, reader: ParticipantId, index: int, author: ParticipantId) -> bool:
        for later in self._entries[index + 1:]:
            if later.message.participant_id != reader:
                continue
            for quoted_id in later.message.metadata.quoted_message_ids:
                quoted = self._index.get(quoted_id)
                if quoted is not None and quoted.message.participant_id == author:
                    return True
        return False

    def _summary_placeholder(self) -> Optional[str]:
        excluded = len(self._entries) - self.config.window_size
        if excluded <= 0:
            return None
        return (
            f"[{excluded} earlier messages summarized: the discussion has covered several "
            "perspectives on the topic, with contributions from multiple council members.]"
        )

    def format_for_prompt(self, context: ConversationContext) -> str:
        """Render a context as the prompt section handed to a participant."""
        lines: List[str] = []

        if context.summary:
            lines.append(f"## EARLIER CONTEXT\n{context.summary}\n")

        lines.append("## CONVERSATION HISTORY\n")
        for entry in context.recent_messages:
            msg = entry.message
            if msg.participant_id == ParticipantId.SYSTEM:
                continue
            speaker = PARTICIPANT_NAMES.get(msg.participant_id, msg.participant_id.value)
            quoted = ""
            if entry.quoted_by:
                quoted = f" [Quoted by: {', '.join(PARTICIPANT_NAMES[q] for q in entry.quoted_by)}]"
            lines.append(f"**{speaker}** (id: {msg.id}){quoted}:")
            lines.append(msg.content)
            lines.append("")

        if context.engagement_debts:
            lines.append("## YOUR REQUIRED ENGAGEMENT THIS TURN\n")
            for debt in context.engagement_debts[:3]:
                creditor = PARTICIPANT_NAMES[debt.creditor]
                reason_text = {
                    DebtReason.DIRECT_QUESTION: f"{creditor} asked you a direct question",
                    DebtReason.MENTIONED_BY_NAME: f"{creditor} mentioned you by name",
                    DebtReason.CHALLENGED: f"{creditor} challenged your position",
                }[debt.reason]
                lines.append(f"- **MUST respond to** {creditor} ({debt.message_id}): {reason_text}")
            lines.append("")

        return "\n".join(lines)

    def reset(self) -> None:
        self._entries = []
        self._index = {}
        self._debts = []
        self._speaking_counts = {pid: 0 for pid in COUNCIL_ORDER}
        self.topic = ""
