"""
Tests for the Duo-Logue Controller and the Whisper Channel.
"""

from datetime import datetime, timezone

import pytest

from socratic_council.orchestrator.conflict import (
    ConflictDetection,
    ConflictDetector,
    ConflictEvaluation,
    PairwiseConflict,
)
from socratic_council.orchestrator.duologue import DuoLogueController, DuoLogueEndReason
from socratic_council.orchestrator.whisper import (
    MAX_PENDING_BONUS,
    PRESS_HINT,
    WhisperChannel,
    WhisperKind,
    pair_key,
)
from socratic_council.protocol.message import COUNCIL_ORDER, Message, ParticipantId

GEORGE = ParticipantId.GEORGE
CATHY = ParticipantId.CATHY
DOUGLAS = ParticipantId.DOUGLAS
KATE = ParticipantId.KATE


def make_detection(a: ParticipantId, b: ParticipantId, raw_score: int = 80) -> ConflictDetection:
    """Helper function to create a conflict detection."""
    return ConflictDetection(
        pair=(a, b),
        raw_score=raw_score,
        threshold=75,
        updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


def make_evaluation(a: ParticipantId, b: ParticipantId, raw_score: int) -> ConflictEvaluation:
    """Helper function to create an evaluation holding a single pair score."""
    return ConflictEvaluation(
        pairs=[PairwiseConflict(participants=(a, b), raw_score=raw_score, score=raw_score / 100)],
    )


class TestDuoLogueController:
    """Tests for the duo-logue state machine."""

    def test_starts_on_detection(self):
        controller = DuoLogueController()
        duologue = controller.start_if_needed(make_detection(GEORGE, DOUGLAS))

        assert duologue is not None
        assert duologue.participants == (GEORGE, DOUGLAS)
        assert duologue.remaining_turns == 3
        assert controller.active

    def test_no_start_without_detection(self):
        controller = DuoLogueController()
        assert controller.start_if_needed(None) is None
        assert not controller.active
        assert controller.eligible(COUNCIL_ORDER) == COUNCIL_ORDER

    def test_no_restart_while_active(self):
        controller = DuoLogueController()
        controller.start_if_needed(make_detection(GEORGE, DOUGLAS))

        assert controller.start_if_needed(make_detection(CATHY, KATE, 95)) is None
        assert controller.current.participants == (GEORGE, DOUGLAS)

    def test_eligible_set_is_the_pair(self):
        controller = DuoLogueController()
        controller.start_if_needed(make_detection(GEORGE, DOUGLAS))
        assert controller.eligible(COUNCIL_ORDER) == [GEORGE, DOUGLAS]

    def test_ends_after_three_completed_turns(self):
        controller = DuoLogueController()
        controller.start_if_needed(make_detection(GEORGE, DOUGLAS))
        remaining = [controller.current.remaining_turns]

        assert controller.complete_turn() is None
        remaining.append(controller.current.remaining_turns)
        assert controller.complete_turn() is None
        remaining.append(controller.current.remaining_turns)

        ended = controller.complete_turn()
        assert ended is not None
        assert ended.reason == DuoLogueEndReason.EXHAUSTED
        assert ended.duologue.remaining_turns == 0
        assert not controller.active
        assert remaining == [3, 2, 1]

    def test_complete_turn_when_inactive_is_a_no_op(self):
        controller = DuoLogueController()
        assert controller.complete_turn() is None

    def test_ends_when_conflict_clears(self):
        controller = DuoLogueController()
        controller.start_if_needed(make_detection(GEORGE, DOUGLAS))

        assert controller.check_conflict(make_evaluation(GEORGE, DOUGLAS, 90), threshold=75) is None
        assert controller.active

        ended = controller.check_conflict(make_evaluation(GEORGE, DOUGLAS, 40), threshold=75)
        assert ended.reason == DuoLogueEndReason.RESOLVED
        assert not controller.active

    def test_zero_turns_never_starts(self):
        controller = DuoLogueController(turns=0)
        assert controller.start_if_needed(make_detection(GEORGE, DOUGLAS)) is None


def test_detected_conflict_narrows_next_turn():
    messages = [
        Message(participant_id=GEORGE, content="Douglas, I disagree. Your claim is wrong, unsupported and flawed."),
        Message(participant_id=DOUGLAS, content="George, you are wrong. That does not follow, and your evidence "
                                                "is flawed and misguided."),
        Message(participant_id=GEORGE, content="I refute that, Douglas. It is false and contradicts the data."),
        Message(participant_id=DOUGLAS, content="No, George, you're mistaken; I reject that and it is simply incorrect."),
    ]
    detection = ConflictDetector().evaluate(messages, COUNCIL_ORDER)
    assert detection is not None and detection.raw_score >= 75

    controller = DuoLogueController()
    duologue = controller.start_if_needed(detection)

    assert duologue.remaining_turns == 3
    assert set(controller.eligible(COUNCIL_ORDER)) == {GEORGE, DOUGLAS}


class TestWhisperChannel:
    """Tests for conflict whispers and pending bid bonuses."""

    def test_whisper_targets_second_member(self):
        channel = WhisperChannel()
        directive = channel.observe_conflict(make_detection(GEORGE, DOUGLAS))

        assert directive.sender == ParticipantId.SYSTEM
        assert directive.recipient == DOUGLAS
        assert directive.payload.bid_bonus == 8
        assert directive.payload.proposed_action == PRESS_HINT
        assert directive.kind == WhisperKind.STRATEGY
        assert channel.pending(DOUGLAS) == 8

    def test_same_pair_whispers_once(self):
        channel = WhisperChannel()
        assert channel.observe_conflict(make_detection(GEORGE, DOUGLAS)) is not None
        assert channel.observe_conflict(make_detection(GEORGE, DOUGLAS, 90)) is None
        # Pair identity is unordered
        assert channel.observe_conflict(make_detection(DOUGLAS, GEORGE)) is None
        assert len(channel.log()) == 1

    def test_new_pair_whispers_again(self):
        channel = WhisperChannel()
        channel.observe_conflict(make_detection(GEORGE, DOUGLAS))
        assert channel.observe_conflict(make_detection(CATHY, KATE)) is not None
        # Returning to the first pair counts as a new distinct pair
        assert channel.observe_conflict(make_detection(GEORGE, DOUGLAS)) is not None

    def test_no_detection_no_whisper(self):
        assert WhisperChannel().observe_conflict(None) is None

    def test_pending_bonus_is_capped(self):
        channel = WhisperChannel()
        for _ in range(4):
            channel.send(ParticipantId.SYSTEM, KATE, "Press.", bid_bonus=8)
        assert channel.pending(KATE) == MAX_PENDING_BONUS

    def test_bonus_does_not_decay_until_consumed(self):
        channel = WhisperChannel()
        channel.send(GEORGE, CATHY, "Back me up.", bid_bonus=5, kind=WhisperKind.ALLIANCE)

        assert channel.pending(CATHY) == 5
        assert channel.pending(CATHY) == 5
        assert channel.consume(CATHY) == 5
        assert channel.pending(CATHY) == 0
        assert channel.consume(CATHY) == 0

    def test_refund_restores_consumed_bonus(self):
        channel = WhisperChannel()
        channel.send(ParticipantId.SYSTEM, KATE, "Press.", bid_bonus=8)
        spent = {KATE: channel.consume(KATE)}

        channel.send(ParticipantId.SYSTEM, KATE, "Press again.", bid_bonus=15)
        channel.refund(spent)
        assert channel.pending(KATE) == MAX_PENDING_BONUS

        channel.refund({GEORGE: 0})
        assert channel.pending(GEORGE) == 0
        assert len(channel.log()) == 2

    def test_log_is_bounded(self):
        channel = WhisperChannel(log_size=3)
        for i in range(5):
            channel.send(ParticipantId.SYSTEM, GEORGE, f"hint {i}")

        log = channel.log()
        assert [d.payload.proposed_action for d in log] == ["hint 2", "hint 3", "hint 4"]

    def test_log_returns_copies(self):
        channel = WhisperChannel()
        channel.send(ParticipantId.SYSTEM, GEORGE, "hint", bid_bonus=1)
        channel.log()[0].payload.bid_bonus = 99
        assert channel.log()[0].payload.bid_bonus == 1

    def test_reset(self):
        channel = WhisperChannel()
        channel.observe_conflict(make_detection(GEORGE, DOUGLAS))
        channel.reset()

        assert channel.last_key is None
        assert channel.log() == []
        assert channel.pending(DOUGLAS) == 0


def test_pair_key_is_unordered():
    assert pair_key((GEORGE, DOUGLAS)) == pair_key((DOUGLAS, GEORGE)) == "douglas-george"
