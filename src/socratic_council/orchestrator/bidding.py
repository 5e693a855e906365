"""
Turn Scheduler for Socratic Council.

Each turn every eligible participant with a usable completion binding places
a bid. The bid is a random base (so the speaking order stays varied) adjusted
by a recency penalty, any accrued whisper credit, and a bonus for outstanding
engagement debts.
"""

import logging
import random
from typing import Dict, Iterable, List, Optional, Protocol, Tuple

from pydantic import BaseModel, Field

from socratic_council.memory.conversation import ConversationMemoryManager
from socratic_council.orchestrator.fairness import FairnessTracker
from socratic_council.orchestrator.whisper import WhisperChannel
from socratic_council.protocol.message import COUNCIL_ORDER, ParticipantId, council_sorted

DEFAULT_BASE_RANGE: Tuple[float, float] = (40.0, 60.0)
RECENCY_PENALTY = 20.0
ENGAGEMENT_WEIGHT = 0.2
ENGAGEMENT_CAP = 15.0
ENGAGEMENT_TOP_DEBTS = 3
MIN_USABLE_SCORE = 1.0


class BindingLookup(Protocol):
    def is_usable(self, participant_id: ParticipantId) -> bool:
        ...


class BiddingRound(BaseModel):
    """Scores of one bidding round. Recomputed every turn."""

    scores: Dict[ParticipantId, float] = Field(..., description="Score per council participant")
    winner: ParticipantId = Field(..., description="Highest scorer, or the fallback")
    eligible: List[ParticipantId] = Field(default_factory=list, description="Eligible set in fixed order")
    fallback: bool = Field(default=False, description="True when nobody had a usable binding")

    def top(self, k: int) -> List[ParticipantId]:
        """
        The ``k`` best-scoring eligible participants.

        Ties keep fixed participant order. A fallback round yields only the winner.
        """
        if self.fallback:
            return [self.winner]
        ranked = [pid for pid in self.eligible if self.scores.get(pid, 0) > 0]
        ranked.sort(key=lambda pid: (-self.scores[pid], COUNCIL_ORDER.index(pid)))
        return ranked[:max(0, k)]


class TurnScheduler:
    """
    Priority auction that picks the next speaker(s).

    Apart from consuming whisper credit of the participants that bid, computing
    a round has no side effects. Given a seeded ``random.Random`` the result is
    reproducible.
    """

    def __init__(
        self,
        bindings: BindingLookup,
        memory: ConversationMemoryManager,
        whisper: WhisperChannel,
        rng: Optional[random.Random] = None,
        base_range: Tuple[float, float] = DEFAULT_BASE_RANGE,
        recency_penalty: float = RECENCY_PENALTY,
        fairness: Optional[FairnessTracker] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            bindings: Tells which participants have a usable completion binding
            memory: Source of outstanding engagement debts
            whisper: Source of pending whisper credit
            rng: Random source for the base score
            base_range: Inclusive-exclusive range of the random base score
            recency_penalty: Amount subtracted from the previous speaker
            fairness: Optional speaking-balance adjustments
        """
        self.bindings = bindings
        self.memory = memory
        self.whisper = whisper
        self.rng = rng or random.Random()
        self.base_range = base_range
        self.recency_penalty = recency_penalty
        self.fairness = fairness
        self.logger = logging.getLogger("socratic_council.orchestrator.bidding")

    def engagement_bonus(self, participant_id: ParticipantId) -> float:
        debts = self.memory.get_engagement_debts(participant_id)[:ENGAGEMENT_TOP_DEBTS]
        return min(ENGAGEMENT_CAP, ENGAGEMENT_WEIGHT * sum(d.priority for d in debts))

    def compute_bids(
        self,
        eligible: Iterable[ParticipantId],
        previous_speaker: Optional[ParticipantId] = None,
    ) -> BiddingRound:
        """
        Run one bidding round.

        Args:
            eligible: Participants allowed to speak this turn
            previous_speaker: Who spoke last turn, if anyone

        Returns:
            A BiddingRound with a score for every council participant
        """
        ordered = council_sorted(eligible)
        scores: Dict[ParticipantId, float] = {pid: 0.0 for pid in COUNCIL_ORDER}
        adjustments = self.fairness.adjustment_map() if self.fairness is not None else {}

        winner: Optional[ParticipantId] = None
        best = 0.0

        for pid in ordered:
            if not self.bindings.is_usable(pid):
                continue

            score = self.rng.uniform(*self.base_range)
            if pid == previous_speaker:
                score -= self.recency_penalty
            score += self.whisper.consume(pid)
            score += self.engagement_bonus(pid)
            score += adjustments.get(pid, 0)
            score = max(MIN_USABLE_SCORE, score)

            scores[pid] = score
            if score > best:
                best = score
                winner = pid

        fallback = winner is None
        if fallback:
            if not ordered:
                raise ValueError("Bidding requires at least one eligible council participant")
            winner = ordered[0]
            self.logger.warning(f"No usable bindings among {len(ordered)} eligible; falling back to {winner.value}")
        else:
            self.logger.debug(f"Bidding winner {winner.value} with {best:.1f}")

        return BiddingRound(scores=scores, winner=winner, eligible=ordered, fallback=fallback)
