"""
Tests for the Turn Scheduler and speaking-balance tracking.
"""

import random

import pytest

from socratic_council.config import BindingRegistry, ProviderCredential
from socratic_council.memory.conversation import ConversationMemoryManager
from socratic_council.orchestrator.bidding import MIN_USABLE_SCORE, BiddingRound, TurnScheduler
from socratic_council.orchestrator.fairness import AdjustmentReason, FairnessTracker
from socratic_council.orchestrator.whisper import WhisperChannel
from socratic_council.protocol.message import COUNCIL_ORDER, Message, ParticipantId

GEORGE = ParticipantId.GEORGE
CATHY = ParticipantId.CATHY
GRACE = ParticipantId.GRACE
DOUGLAS = ParticipantId.DOUGLAS
KATE = ParticipantId.KATE

ALL_PROVIDERS = ("openai", "anthropic", "google", "deepseek", "kimi")


def make_bindings(*providers: str) -> BindingRegistry:
    """Helper function to build a registry where the given providers have keys."""
    return BindingRegistry(
        credentials={p: ProviderCredential(provider=p, api_key="test-key") for p in providers}
    )


def make_scheduler(bindings=None, memory=None, whisper=None, fixed_base=True, **kwargs) -> TurnScheduler:
    """Helper function to build a scheduler; a fixed base makes scores exact."""
    if fixed_base:
        kwargs.setdefault("base_range", (50.0, 50.0))
    return TurnScheduler(
        bindings if bindings is not None else make_bindings(*ALL_PROVIDERS),
        memory or ConversationMemoryManager(),
        whisper or WhisperChannel(),
        rng=kwargs.pop("rng", random.Random(7)),
        **kwargs,
    )


class TestTurnScheduler:
    """Tests for bid computation and winner selection."""

    def test_previous_speaker_scores_exactly_20_lower(self):
        scheduler = make_scheduler()
        bidding = scheduler.compute_bids([GEORGE, CATHY], previous_speaker=GEORGE)

        assert bidding.scores[CATHY] - bidding.scores[GEORGE] == 20
        assert bidding.winner == CATHY

    def test_recency_penalty_with_random_base(self):
        # Same seed, same draws: only the penalty differs
        plain = make_scheduler(fixed_base=False, rng=random.Random(3)).compute_bids([GEORGE])
        penalized = make_scheduler(fixed_base=False, rng=random.Random(3)).compute_bids([GEORGE], GEORGE)

        assert plain.scores[GEORGE] - penalized.scores[GEORGE] == pytest.approx(20)

    def test_ineligible_participants_score_zero(self):
        bidding = make_scheduler(fixed_base=False).compute_bids([GEORGE, GRACE])

        assert set(bidding.scores) == set(COUNCIL_ORDER)
        for pid in (CATHY, DOUGLAS, KATE):
            assert bidding.scores[pid] == 0
        assert bidding.scores[GEORGE] > 0
        assert bidding.scores[GRACE] > 0
        assert bidding.winner in (GEORGE, GRACE)

    def test_unusable_binding_scores_zero(self):
        scheduler = make_scheduler(bindings=make_bindings("openai"))
        bidding = scheduler.compute_bids(COUNCIL_ORDER)

        assert bidding.winner == GEORGE
        assert not bidding.fallback
        assert all(bidding.scores[pid] == 0 for pid in COUNCIL_ORDER if pid != GEORGE)

    def test_fallback_when_nobody_is_usable(self):
        scheduler = make_scheduler(bindings=make_bindings())
        bidding = scheduler.compute_bids([KATE, CATHY])

        assert bidding.fallback
        assert bidding.winner == CATHY
        assert all(score == 0 for score in bidding.scores.values())
        assert bidding.top(3) == [CATHY]

    def test_ties_break_in_fixed_order(self):
        scheduler = make_scheduler()
        assert scheduler.compute_bids(COUNCIL_ORDER).winner == GEORGE
        assert scheduler.compute_bids([KATE, GRACE]).winner == GRACE

    def test_empty_eligible_set_is_rejected(self):
        with pytest.raises(ValueError):
            make_scheduler().compute_bids([])

    def test_whisper_bonus_is_added_and_consumed(self):
        whisper = WhisperChannel()
        whisper.send(ParticipantId.SYSTEM, CATHY, "Press harder.", bid_bonus=8)
        scheduler = make_scheduler(whisper=whisper)

        first = scheduler.compute_bids([GEORGE, CATHY])
        assert first.scores[CATHY] == 58
        assert first.winner == CATHY
        assert whisper.pending(CATHY) == 0

        second = scheduler.compute_bids([GEORGE, CATHY])
        assert second.scores[CATHY] == 50

    def test_whisper_bonus_kept_for_non_bidders(self):
        whisper = WhisperChannel()
        whisper.send(ParticipantId.SYSTEM, KATE, "Wait for your moment.", bid_bonus=8)
        make_scheduler(whisper=whisper).compute_bids([GEORGE, CATHY])

        assert whisper.pending(KATE) == 8

    def test_engagement_bonus_from_debts(self):
        memory = ConversationMemoryManager()
        memory.add_message(Message(participant_id=GEORGE, content="Cathy, what do you think?"))
        memory.add_message(Message(participant_id=GEORGE, content="Grace made a fine remark earlier."))
        scheduler = make_scheduler(memory=memory)

        bidding = scheduler.compute_bids([CATHY, GRACE, KATE])

        # 0.2 * 90 = 18, capped at 15
        assert bidding.scores[CATHY] == 65
        # 0.2 * 60 = 12
        assert bidding.scores[GRACE] == 62
        assert bidding.scores[KATE] == 50
        assert bidding.winner == CATHY

    def test_seeded_rounds_are_reproducible(self):
        first = make_scheduler(fixed_base=False, rng=random.Random(42))
        second = make_scheduler(fixed_base=False, rng=random.Random(42))

        for previous in (None, GEORGE, KATE):
            assert first.compute_bids(COUNCIL_ORDER, previous) == second.compute_bids(COUNCIL_ORDER, previous)

    def test_base_scores_stay_in_range(self):
        scheduler = make_scheduler(fixed_base=False, rng=random.Random(1))
        for _ in range(20):
            bidding = scheduler.compute_bids(COUNCIL_ORDER)
            assert all(40 <= score <= 60 for score in bidding.scores.values())

    def test_fairness_adjustments_applied_when_enabled(self):
        fairness = FairnessTracker()
        fairness.record_speaker(GEORGE)
        scheduler = make_scheduler(fairness=fairness)

        bidding = scheduler.compute_bids([GEORGE, CATHY])
        assert bidding.scores[GEORGE] == MIN_USABLE_SCORE
        assert bidding.winner == CATHY


def test_bidding_round_top_k():
    bidding = BiddingRound(
        scores={GEORGE: 40.0, CATHY: 55.0, GRACE: 55.0, DOUGLAS: 0.0, KATE: 10.0},
        winner=CATHY,
        eligible=list(COUNCIL_ORDER),
    )

    assert bidding.top(1) == [CATHY]
    assert bidding.top(3) == [CATHY, GRACE, GEORGE]
    # Zero scores are never selected
    assert bidding.top(5) == [CATHY, GRACE, GEORGE, KATE]


class TestFairnessTracker:
    """Tests for the sliding-window speaker balance."""

    def test_no_adjustments_without_history(self):
        assert FairnessTracker().calculate_adjustments() == []

    def test_just_spoke_and_underrepresented(self):
        tracker = FairnessTracker()
        for pid in (GEORGE, CATHY, GEORGE, DOUGLAS, GEORGE):
            tracker.record_speaker(pid)

        adjustments = {a.participant_id: a for a in tracker.calculate_adjustments()}
        assert adjustments[GEORGE].reason == AdjustmentReason.JUST_SPOKE
        assert adjustments[GEORGE].adjustment == -100
        assert adjustments[GRACE].adjustment == 60
        assert adjustments[KATE].adjustment == 60
        assert adjustments[CATHY].adjustment == 30
        assert adjustments[DOUGLAS].adjustment == 30

    def test_overrepresented(self):
        tracker = FairnessTracker()
        for pid in (GEORGE, CATHY, GEORGE, DOUGLAS, GEORGE, KATE):
            tracker.record_speaker(pid)

        adjustments = tracker.adjustment_map()
        assert adjustments[GEORGE] == -80
        assert adjustments[KATE] == -100

    def test_window_is_bounded(self):
        tracker = FairnessTracker(window_size=3)
        for pid in (GEORGE, GEORGE, CATHY, DOUGLAS, KATE):
            tracker.record_speaker(pid)

        counts = tracker.speaking_counts()
        assert counts[GEORGE] == 0
        assert sum(counts.values()) == 3
