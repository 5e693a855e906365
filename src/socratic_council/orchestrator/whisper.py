"""
Whisper Channel for Socratic Council.

Whispers are private strategic nudges. They never appear in the transcript or
in any participant's prompt; their only effect is a bid bonus that the target
carries into a later bidding round.
"""

import logging
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Deque, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, Field

from socratic_council.errors import utc_now
from socratic_council.orchestrator.conflict import ConflictDetection
from socratic_council.protocol.message import COUNCIL_ORDER, ParticipantId

MAX_PENDING_BONUS = 20
DEFAULT_BID_BONUS = 8
PRESS_HINT = "Press the counterpoint and tighten the argument."


class WhisperKind(str, Enum):
    STRATEGY = "strategy"
    ALLIANCE = "alliance"
    REFERRAL = "referral"


class WhisperPayload(BaseModel):
    proposed_action: str = Field(..., description="Strategic hint for the recipient")
    bid_bonus: int = Field(default=0, ge=0, description="Bonus added to the recipient's next bid")


class WhisperDirective(BaseModel):
    """A private directive from one participant (or the system) to another."""

    id: str = Field(default_factory=lambda: f"whisper_{uuid4().hex[:10]}")
    sender: ParticipantId = Field(..., description="Who sent the whisper")
    recipient: ParticipantId = Field(..., description="Who receives the bonus")
    kind: WhisperKind = Field(default=WhisperKind.STRATEGY)
    payload: WhisperPayload
    created_at: datetime = Field(default_factory=utc_now)


def pair_key(pair: Tuple[ParticipantId, ParticipantId]) -> str:
    """Key identifying an unordered pair."""
    return "-".join(sorted(p.value for p in pair))


class WhisperChannel:
    """
    Issues whispers on newly observed conflicts and holds pending bid bonuses.

    Pending bonus per participant is capped at ``MAX_PENDING_BONUS`` and does
    not decay; it is zeroed only when consumed by a bid.
    """

    def __init__(self, bid_bonus: int = DEFAULT_BID_BONUS, log_size: int = 20, hint: str = PRESS_HINT):
        self.bid_bonus = bid_bonus
        self.hint = hint
        self.last_key: Optional[str] = None
        self._log: Deque[WhisperDirective] = deque(maxlen=log_size)
        self._pending: Dict[ParticipantId, int] = {pid: 0 for pid in COUNCIL_ORDER}
        self.logger = logging.getLogger("socratic_council.orchestrator.whisper")

    def observe_conflict(self, detection: Optional[ConflictDetection]) -> Optional[WhisperDirective]:
        """
        Emit one whisper per newly observed distinct conflicting pair.

        The second member of the pair is told to press its point.

        Returns:
            The directive, or None when the pair was already whispered about
        """
        if detection is None:
            return None

        key = pair_key(detection.pair)
        if key == self.last_key:
            return None
        self.last_key = key

        return self.send(
            sender=ParticipantId.SYSTEM,
            recipient=detection.pair[1],
            proposed_action=self.hint,
            bid_bonus=self.bid_bonus,
        )

    def send(
        self,
        sender: ParticipantId,
        recipient: ParticipantId,
        proposed_action: str,
        bid_bonus: int = 0,
        kind: WhisperKind = WhisperKind.STRATEGY,
    ) -> WhisperDirective:
        """Record a whisper and credit its bonus to the recipient."""
        directive = WhisperDirective(
            sender=sender,
            recipient=recipient,
            kind=kind,
            payload=WhisperPayload(proposed_action=proposed_action, bid_bonus=bid_bonus),
        )
        self._log.append(directive)

        current = self._pending.get(recipient, 0)
        self._pending[recipient] = min(MAX_PENDING_BONUS, max(0, current + bid_bonus))
        self.logger.info(f"Whisper to {recipient.value}: +{bid_bonus} (pending {self._pending[recipient]})")
        return directive

    def pending(self, participant_id: ParticipantId) -> int:
        """Bonus the participant would add to its next bid."""
        return self._pending.get(participant_id, 0)

    def pending_bonuses(self) -> Dict[ParticipantId, int]:
        """
        Snapshot of every participant's pending bonus.

        Returns:
            A copy keyed by participant; mutating it does not affect the channel
        """
        return dict(self._pending)

    def consume(self, participant_id: ParticipantId) -> int:
        """Return and zero a participant's pending bonus."""
        bonus = self._pending.get(participant_id, 0)
        self._pending[participant_id] = 0
        return bonus

    def refund(self, bonuses: Dict[ParticipantId, int]) -> None:
        """
        Return consumed bonuses to their owners.

        Used when a bid round is abandoned before its turn completes. Refunds
        stack on top of anything whispered since and respect the pending cap.

        Args:
            bonuses: Amount to return per participant
        """
        for participant_id, bonus in bonuses.items():
            if bonus <= 0:
                continue
            current = self._pending.get(participant_id, 0)
            self._pending[participant_id] = min(MAX_PENDING_BONUS, current + bonus)
            self.logger.debug(f"Refunded {bonus} to {participant_id.value} (pending {self._pending[participant_id]})")

    def log(self) -> List[WhisperDirective]:
        """Copies of the most recent directives, oldest first."""
        return [d.model_copy(deep=True) for d in self._log]

    def reset(self) -> None:
        self.last_key = None
        self._log.clear()
        self._pending = {pid: 0 for pid in COUNCIL_ORDER}
