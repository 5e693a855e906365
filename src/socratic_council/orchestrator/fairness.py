"""
Speaking-balance tracking for Socratic Council.

Keeps a sliding window of recent speakers and proposes bid adjustments that
damp over-represented participants and lift silent ones.
"""

from collections import deque
from enum import Enum
from typing import Deque, Dict, List, Optional

from pydantic import BaseModel

from socratic_council.protocol.message import COUNCIL_ORDER, ParticipantId


class AdjustmentReason(str, Enum):
    JUST_SPOKE = "just_spoke"
    OVERREPRESENTED = "overrepresented"
    UNDERREPRESENTED = "underrepresented"


class FairnessAdjustment(BaseModel):
    participant_id: ParticipantId
    adjustment: int
    reason: AdjustmentReason


class FairnessTracker:
    """Sliding-window speaker balance."""

    def __init__(
        self,
        window_size: int = 10,
        max_speaks_in_window: int = 3,
        participants: Optional[List[ParticipantId]] = None,
    ):
        self.window_size = window_size
        self.max_speaks_in_window = max_speaks_in_window
        self.participants = list(participants or COUNCIL_ORDER)
        self._recent: Deque[ParticipantId] = deque(maxlen=window_size)

    def record_speaker(self, participant_id: ParticipantId) -> None:
        """Append a speaker to the window, evicting the oldest entry when full."""
        self._recent.append(participant_id)

    def speaking_counts(self) -> Dict[ParticipantId, int]:
        """
        Count appearances of each tracked participant in the window.

        Returns:
            Mapping of participant to count, zero for those not in the window
        """
        counts = {pid: 0 for pid in self.participants}
        for pid in self._recent:
            if pid in counts:
                counts[pid] += 1
        return counts

    def calculate_adjustments(self) -> List[FairnessAdjustment]:
        """
        Propose bid adjustments from the current window.

        The most recent speaker gets -100 and anyone at or above
        ``max_speaks_in_window`` gets -80. Once the window holds at least one
        entry per participant, those heard at most once are lifted: +60 if
        silent, +30 if heard once. Participants needing no change are omitted.

        Returns:
            One adjustment per affected participant, in council order
        """
        counts = self.speaking_counts()
        last = self._recent[-1] if self._recent else None
        adjustments: List[FairnessAdjustment] = []

        for pid in self.participants:
            count = counts[pid]
            if pid == last:
                adjustments.append(FairnessAdjustment(
                    participant_id=pid, adjustment=-100, reason=AdjustmentReason.JUST_SPOKE,
                ))
            elif count >= self.max_speaks_in_window:
                adjustments.append(FairnessAdjustment(
                    participant_id=pid, adjustment=-80, reason=AdjustmentReason.OVERREPRESENTED,
                ))
            elif len(self._recent) >= len(self.participants) and count <= 1:
                adjustments.append(FairnessAdjustment(
                    participant_id=pid,
                    adjustment=60 if count == 0 else 30,
                    reason=AdjustmentReason.UNDERREPRESENTED,
                ))

        return adjustments

    def adjustment_map(self) -> Dict[ParticipantId, int]:
        """Adjustments keyed by participant."""
        return {a.participant_id: a.adjustment for a in self.calculate_adjustments()}

    def reset(self) -> None:
        self._recent.clear()
