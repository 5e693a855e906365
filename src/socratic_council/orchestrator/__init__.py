"""
Council Orchestrator for Socratic Council

This module provides the session loop and its components: the bidding turn
scheduler, the conflict detector, the duo-logue state machine and the whisper
side-channel.
"""

from socratic_council.orchestrator.bidding import BiddingRound, TurnScheduler
from socratic_council.orchestrator.conflict import ConflictDetection, ConflictDetector, ConflictEvaluation, PairwiseConflict
from socratic_council.orchestrator.duologue import DuoLogue, DuoLogueController
from socratic_council.orchestrator.events import EventType, SessionEvent
from socratic_council.orchestrator.session import SessionController, SessionSnapshot
from socratic_council.orchestrator.session_state import SessionStatus
from socratic_council.orchestrator.whisper import WhisperChannel, WhisperDirective

__all__ = [
    "BiddingRound",
    "TurnScheduler",
    "ConflictDetection",
    "ConflictDetector",
    "ConflictEvaluation",
    "PairwiseConflict",
    "DuoLogue",
    "DuoLogueController",
    "EventType",
    "SessionEvent",
    "SessionController",
    "SessionSnapshot",
    "SessionStatus",
    "WhisperChannel",
    "WhisperDirective",
]
