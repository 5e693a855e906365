"""
Duo-Logue Controller for Socratic Council.

When a conflict is detected the eligible speaker set narrows to the two
conflicting participants for a bounded number of turns.
"""

import logging
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from socratic_council.orchestrator.conflict import ConflictDetection, ConflictEvaluation
from socratic_council.protocol.message import ParticipantId

DEFAULT_DUOLOGUE_TURNS = 3


class DuoLogueEndReason(str, Enum):
    EXHAUSTED = "exhausted"  # remaining_turns reached 0
    RESOLVED = "resolved"    # the pair no longer scores as a conflict


class DuoLogue(BaseModel):
    """An active conflict-triggered sub-dialogue."""

    participants: Tuple[ParticipantId, ParticipantId] = Field(..., description="The conflicting pair")
    remaining_turns: int = Field(..., ge=0, description="Turns left before the duo-logue ends")
    started_score: int = Field(default=0, description="Raw conflict score that triggered it")


class DuoLogueEnded(BaseModel):
    duologue: DuoLogue
    reason: DuoLogueEndReason


class DuoLogueController:
    """
    Two-state machine (inactive / active) narrowing eligibility to a pair.

    ``remaining_turns`` only ever decreases; the duo-logue ends when it hits
    zero or when the pair's conflict score drops below the threshold.
    """

    def __init__(self, turns: int = DEFAULT_DUOLOGUE_TURNS):
        self.turns = turns
        self.current: Optional[DuoLogue] = None
        self.logger = logging.getLogger("socratic_council.orchestrator.duologue")

    @property
    def active(self) -> bool:
        return self.current is not None

    def start_if_needed(self, detection: Optional[ConflictDetection]) -> Optional[DuoLogue]:
        """
        Start a duo-logue for a detected conflict if none is active.

        Returns:
            The new duo-logue, or None if nothing started
        """
        if detection is None or self.current is not None or self.turns <= 0:
            return None

        self.current = DuoLogue(
            participants=detection.pair,
            remaining_turns=self.turns,
            started_score=detection.raw_score,
        )
        self.logger.info(
            f"Duo-logue started: {detection.pair[0].value} vs {detection.pair[1].value} "
            f"(score {detection.raw_score}, {self.turns} turns)"
        )
        return self.current.model_copy()

    def eligible(self, all_participants: List[ParticipantId]) -> List[ParticipantId]:
        """The eligible speaker set: the pair when active, everyone otherwise."""
        if self.current is None:
            return list(all_participants)
        return list(self.current.participants)

    def complete_turn(self) -> Optional[DuoLogueEnded]:
        """Count one completed turn; ends the duo-logue when turns run out."""
        if self.current is None:
            return None

        self.current.remaining_turns = max(0, self.current.remaining_turns - 1)
        if self.current.remaining_turns == 0:
            return self._end(DuoLogueEndReason.EXHAUSTED)
        return None

    def check_conflict(self, evaluation: ConflictEvaluation, threshold: int) -> Optional[DuoLogueEnded]:
        """End the duo-logue if its pair no longer scores at or above ``threshold``."""
        if self.current is None:
            return None

        a, b = self.current.participants
        if evaluation.score_for(a, b) < threshold:
            return self._end(DuoLogueEndReason.RESOLVED)
        return None

    def _end(self, reason: DuoLogueEndReason) -> DuoLogueEnded:
        ended = DuoLogueEnded(duologue=self.current.model_copy(), reason=reason)
        self.current = None
        self.logger.info(f"Duo-logue ended ({reason.value})")
        return ended

    def reset(self) -> None:
        self.current = None
