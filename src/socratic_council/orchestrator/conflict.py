"""
Conflict Detector for Socratic Council.

Scores pairwise tension between council members from their recent exchanges
using lightweight lexical heuristics. Every unordered pair is rescored from
scratch on each evaluation, so the result depends only on the message list.
"""

import logging
import re
from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Set, Tuple

from pydantic import BaseModel, Field

from socratic_council.protocol.message import Message, ParticipantId, council_sorted, mentions_participant

DEFAULT_THRESHOLD = 75
DEFAULT_WINDOW = 12

DISAGREE_CUES: List[Tuple[str, int]] = [
    # Strong disagreement
    ("disagree", 18),
    ("incorrect", 18),
    ("wrong", 18),
    ("false", 18),
    ("not true", 16),
    ("i reject", 16),
    ("i refute", 16),
    ("refute", 16),
    ("contradict", 14),
    ("no evidence", 14),
    ("unsupported", 14),
    ("flawed", 14),
    ("misguided", 14),
    # Softer tension / pushback
    ("i'm not convinced", 12),
    ("not convinced", 12),
    ("i doubt", 10),
    ("i question", 10),
    ("i'm skeptical", 10),
    ("i'm not sure", 8),
    ("i don't think", 12),
    ("i do not think", 12),
    ("however", 8),
    ("but", 6),
    ("yet", 6),
    ("still", 6),
    ("counter", 10),
]

DISAGREE_PATTERNS: List[Tuple["re.Pattern[str]", int]] = [
    (re.compile(r"\b(i\s+do\s+not|i\s+don't)\s+(agree|buy|think|see)\b", re.IGNORECASE), 14),
    (re.compile(r"\b(that\s+doesn't|that\s+does\s+not)\s+(follow|work|hold)\b", re.IGNORECASE), 12),
    (re.compile(r"\b(you're|you\s+are)\s+(wrong|mistaken)\b", re.IGNORECASE), 16),
]

AGREE_CUES: List[Tuple[str, int]] = [
    ("agree", 12),
    ("concur", 12),
    ("good point", 10),
    ("fair point", 10),
    ("makes sense", 10),
    ("valid", 8),
    ("exactly", 8),
]

NEGATION_PATTERN = re.compile(
    r"\b(not|no|never|cannot|can't|don't|doesn't|isn't|aren't|won't|wasn't|nothing|neither|nor)\b",
    re.IGNORECASE,
)
WORD_PATTERN = re.compile(r"[a-z][a-z']+")
STOPWORDS = frozenset({
    "that", "this", "with", "from", "have", "there", "their", "they", "what", "which",
    "would", "could", "should", "about", "your", "into", "than", "then", "them", "were",
    "been", "will", "just", "more", "some", "also", "only", "very", "over", "under",
    "most", "when", "where", "while", "here", "these", "those",
})

# Aggregation constants
RECENT_COUNT = 4
RECENCY_WEIGHTS = (1, 2, 3, 4)
MEAN_SHARE = 0.7
PEAK_SHARE = 0.3
ADDRESS_BONUS = 6
CONTRADICTION_BONUS = 12
CONTRADICTION_MIN_OVERLAP = 2
ALTERNATION_STEP = 4
ALTERNATION_CAP = 12
MENTION_STEP = 3
MENTION_CAP = 9
RECIPROCITY_THRESHOLD = 30
RECIPROCITY_BONUS = 10
SUSTAINED_GATE = 28
SUSTAINED_STEP = 2.5
SUSTAINED_CAP = 10
COOLDOWN_COUNT = 3
CALM_THRESHOLD = 15
COOLDOWN_FACTOR = 0.5


class PairwiseConflict(BaseModel):
    """Tension between one unordered pair of participants."""

    participants: Tuple[ParticipantId, ParticipantId]
    raw_score: int = Field(..., ge=0, le=100, description="Conflict score on a 0-100 scale")
    score: float = Field(..., ge=0.0, le=1.0, description="raw_score / 100")


class ConflictDetection(BaseModel):
    """The strongest pair whose raw score reaches the threshold."""

    pair: Tuple[ParticipantId, ParticipantId]
    raw_score: int = Field(..., ge=0, le=100)
    threshold: int
    updated_at: Optional[datetime] = Field(None, description="Timestamp of the latest message scored for the pair")


class ConflictEvaluation(BaseModel):
    """Result of scoring every pair."""

    pairs: List[PairwiseConflict] = Field(default_factory=list)
    strongest: Optional[ConflictDetection] = None

    def score_for(self, a: ParticipantId, b: ParticipantId) -> int:
        wanted = {a, b}
        for pair in self.pairs:
            if set(pair.participants) == wanted:
                return pair.raw_score
        return 0


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _cue_matches(lower: str, cue: str) -> bool:
    if " " in cue:
        return cue in lower
    return re.search(rf"\b{re.escape(cue)}\b", lower) is not None


def score_message(text: str) -> float:
    """Lexical disagreement signal for one message, clamped to [0, 100]."""
    lower = text.lower()
    score = 0.0

    for cue, weight in DISAGREE_CUES:
        if _cue_matches(lower, cue):
            score += weight

    for pattern, weight in DISAGREE_PATTERNS:
        if pattern.search(text):
            score += weight

    for cue, weight in AGREE_CUES:
        if _cue_matches(lower, cue):
            score -= weight

    if "?" in lower:
        score += 4
    if "!" in lower:
        score += 2

    return _clamp(score)


def content_words(text: str) -> Set[str]:
    return {w for w in WORD_PATTERN.findall(text.lower()) if len(w) >= 4 and w not in STOPWORDS}


def is_implicit_contradiction(text: str, previous: Optional[str]) -> bool:
    """Negation combined with enough shared vocabulary with the other side's last message."""
    if previous is None or NEGATION_PATTERN.search(text) is None:
        return False
    return len(content_words(text) & content_words(previous)) >= CONTRADICTION_MIN_OVERLAP


def count_alternations(speakers: Sequence[ParticipantId]) -> int:
    return sum(1 for i in range(1, len(speakers)) if speakers[i] != speakers[i - 1])


class ConflictDetector:
    """
    Heuristic pairwise conflict scoring.

    For each pair the last ``window_size`` messages authored by either member
    are scored individually and aggregated with recency weighting,
    alternation, addressing, reciprocity, sustained-tension and cooldown
    terms.
    """

    def __init__(self, threshold: int = DEFAULT_THRESHOLD, window_size: int = DEFAULT_WINDOW):
        self.threshold = threshold
        self.window_size = window_size
        self.logger = logging.getLogger("socratic_council.orchestrator.conflict")

    def evaluate_all(self, history: Sequence[Message], participants: Iterable[ParticipantId]) -> ConflictEvaluation:
        """
        Score every unordered pair of participants.

        Args:
            history: Finalized messages in transcript order
            participants: Participants to pair up (council members only)

        Returns:
            All pair scores plus the strongest pair at or above the threshold
        """
        ordered = council_sorted(participants)
        pairs: List[PairwiseConflict] = []
        strongest: Optional[ConflictDetection] = None

        for i, agent_a in enumerate(ordered):
            for agent_b in ordered[i + 1:]:
                raw_score, updated_at = self.score_pair(history, agent_a, agent_b)
                pairs.append(PairwiseConflict(
                    participants=(agent_a, agent_b),
                    raw_score=raw_score,
                    score=raw_score / 100,
                ))

                if raw_score >= self.threshold and (strongest is None or raw_score > strongest.raw_score):
                    strongest = ConflictDetection(
                        pair=(agent_a, agent_b),
                        raw_score=raw_score,
                        threshold=self.threshold,
                        updated_at=updated_at,
                    )

        if strongest is not None:
            a, b = strongest.pair
            self.logger.debug(f"Strongest conflict {a.value}/{b.value} at {strongest.raw_score}")
        return ConflictEvaluation(pairs=pairs, strongest=strongest)

    def evaluate(self, history: Sequence[Message], participants: Iterable[ParticipantId]) -> Optional[ConflictDetection]:
        """Return only the strongest qualifying pair."""
        return self.evaluate_all(history, participants).strongest

    def score_pair(
        self,
        history: Sequence[Message],
        agent_a: ParticipantId,
        agent_b: ParticipantId,
    ) -> Tuple[int, Optional[datetime]]:
        """
        Raw 0-100 conflict score for one pair.

        Returns:
            Tuple of (raw score, timestamp of the newest message considered)
        """
        recent = [
            m for m in history
            if m.participant_id in (agent_a, agent_b) and m.has_content
        ][-self.window_size:]

        if len(recent) < 2:
            return 0, None
        speakers = [m.participant_id for m in recent]
        if agent_a not in speakers or agent_b not in speakers:
            return 0, recent[-1].timestamp

        lexical: List[float] = []
        adjusted: List[float] = []
        mention_count = 0
        last_text = {agent_a: None, agent_b: None}

        for message in recent:
            author = message.participant_id
            other = agent_b if author == agent_a else agent_a
            base = score_message(message.content)
            bonus = 0.0

            if mentions_participant(message.content, other):
                mention_count += 1
                bonus += ADDRESS_BONUS
            if is_implicit_contradiction(message.content, last_text[other]):
                bonus += CONTRADICTION_BONUS

            lexical.append(base)
            adjusted.append(_clamp(base + bonus))
            last_text[author] = message.content

        tail = adjusted[-RECENT_COUNT:]
        weights = RECENCY_WEIGHTS[-len(tail):]
        weighted_mean = sum(s * w for s, w in zip(tail, weights)) / sum(weights)
        score = weighted_mean * MEAN_SHARE + max(tail) * PEAK_SHARE

        score += min(ALTERNATION_CAP, count_alternations(speakers) * ALTERNATION_STEP)
        score += min(MENTION_CAP, mention_count * MENTION_STEP)

        peak_a = max((s for s, m in zip(adjusted, recent) if m.participant_id == agent_a), default=0.0)
        peak_b = max((s for s, m in zip(adjusted, recent) if m.participant_id == agent_b), default=0.0)
        if peak_a >= RECIPROCITY_THRESHOLD and peak_b >= RECIPROCITY_THRESHOLD:
            score += RECIPROCITY_BONUS

        if max(adjusted) > SUSTAINED_GATE:
            sustained = sum(1 for s in tail if s >= SUSTAINED_GATE)
            score += min(SUSTAINED_CAP, sustained * SUSTAINED_STEP)

        calm_tail = lexical[-COOLDOWN_COUNT:]
        if len(calm_tail) == COOLDOWN_COUNT and all(s < CALM_THRESHOLD for s in calm_tail):
            score *= COOLDOWN_FACTOR

        return int(round(_clamp(score))), recent[-1].timestamp
