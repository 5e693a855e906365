"""
Session Controller for Socratic Council.

This module implements the main loop of a council session: it narrows the
eligible speakers during a duo-logue, runs the bidding round, dispatches
completion requests, feeds results into memory, the cost ledger and the
conflict detector, and emits events to observers.

All shared state is owned by the controller and mutated only from its own
loop iteration, so no locks are needed.
"""

import asyncio
import logging
import random
from collections import deque
from typing import Deque, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from socratic_council.adapters.base.adapter import (
    CompletionOptions,
    CompletionResult,
    CompletionService,
    build_prompt,
)
from socratic_council.adapters.base.cancellation import CancellationRegistry
from socratic_council.config import BindingRegistry, SessionConfig
from socratic_council.errors import (
    CouncilError,
    MissingBindingError,
    ProviderFailureError,
    RequestTimeoutError,
    SessionError,
    TransitionError,
)
from socratic_council.ledger.cost import CostLedger, CostSnapshot
from socratic_council.ledger.pricing import PricingTable
from socratic_council.memory.base import TranscriptStore
from socratic_council.memory.conversation import ConversationMemoryManager, MemoryConfig
from socratic_council.orchestrator.bidding import BiddingRound, TurnScheduler
from socratic_council.orchestrator.conflict import ConflictDetection, ConflictDetector, ConflictEvaluation
from socratic_council.orchestrator.duologue import DuoLogue, DuoLogueController, DuoLogueEnded
from socratic_council.orchestrator.events import EventBus, EventHandler, EventType
from socratic_council.orchestrator.fairness import FairnessTracker
from socratic_council.orchestrator.session_state import (
    TERMINAL_STATES,
    SessionStatus,
    validate_state_transition,
)
from socratic_council.orchestrator.streaming import ChunkCoalescer
from socratic_council.orchestrator.whisper import WhisperChannel, WhisperDirective, WhisperKind
from socratic_council.protocol.actions import ExtractedReaction, extract_actions
from socratic_council.protocol.message import (
    COUNCIL_ORDER,
    PARTICIPANT_NAMES,
    Message,
    ParticipantId,
    TokenUsage,
    create_placeholder,
    create_system_message,
)


class SessionSnapshot(BaseModel):
    """Read-only copy of a session's state."""

    session_id: str
    status: SessionStatus
    topic: str
    turn_number: int = Field(..., description="Completed turns")
    max_turns: int
    messages: List[Message] = Field(default_factory=list, description="Finalized messages in order")
    last_bidding: Optional[BiddingRound] = None
    conflict: Optional[ConflictEvaluation] = None
    active_conflict: Optional[ConflictDetection] = None
    duologue: Optional[DuoLogue] = None
    whispers: List[WhisperDirective] = Field(default_factory=list)
    pending_whisper_bonus: Dict[ParticipantId, int] = Field(default_factory=dict)
    costs: CostSnapshot = Field(default_factory=CostSnapshot)
    errors: List[SessionError] = Field(default_factory=list)
    speaking_counts: Dict[ParticipantId, int] = Field(default_factory=dict)
    recent_speaking_counts: Dict[ParticipantId, int] = Field(default_factory=dict)


class RequestOutcome(BaseModel):
    """One dispatched request and what came back."""

    participant_id: ParticipantId
    model: str
    message: Message
    result: CompletionResult


def _has_usage(usage: TokenUsage) -> bool:
    return bool(usage.input or usage.output or usage.reasoning)


class SessionController:
    """
    Drives a council session from start to completion.

    States: idle -> running <-> paused -> stopped | completed. Pause and stop
    cancel every in-flight request through the per-turn cancellation registry
    and discard their streaming placeholders.
    """

    def __init__(
        self,
        config: SessionConfig,
        completion_service: CompletionService,
        bindings: Optional[BindingRegistry] = None,
        pricing: Optional[PricingTable] = None,
        transcript_store: Optional[TranscriptStore] = None,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
    ):
        """
        Initialize the session controller.

        Args:
            config: Session settings
            completion_service: Produces completions for participants
            bindings: Which participants are usable and with which model
            pricing: Model pricing for the cost ledger
            transcript_store: Optional collaborator receiving finalized messages
            rng: Random source for bids and retries (seeded from config if omitted)
            session_id: Explicit session id
        """
        self.config = config
        self.completion_service = completion_service
        self.bindings = bindings or BindingRegistry.from_env()
        self.transcript_store = transcript_store
        self.session_id = session_id or f"session_{uuid4().hex[:10]}"
        self.rng = rng or random.Random(config.seed)
        self.logger = logging.getLogger("socratic_council.orchestrator")

        self.memory = ConversationMemoryManager(MemoryConfig(window_size=config.memory_window))
        self.whisper = WhisperChannel(bid_bonus=config.whisper_bid_bonus, log_size=config.whisper_log_size)
        self.fairness = FairnessTracker()
        self.scheduler = TurnScheduler(
            self.bindings,
            self.memory,
            self.whisper,
            rng=self.rng,
            fairness=self.fairness if config.fairness_enabled else None,
        )
        self.detector = ConflictDetector(threshold=config.conflict_threshold, window_size=config.conflict_window)
        self.duologue = DuoLogueController(turns=config.duologue_turns)
        self.ledger = CostLedger(pricing)
        self.events = EventBus(self.session_id)
        self.registry = CancellationRegistry()

        self.status = SessionStatus.IDLE
        self.turn_number = 0
        self.previous_speaker: Optional[ParticipantId] = None
        self.last_bidding: Optional[BiddingRound] = None
        self.conflict_evaluation: Optional[ConflictEvaluation] = None
        self.active_conflict: Optional[ConflictDetection] = None
        self._messages: List[Message] = []
        self._errors: Deque[SessionError] = deque(maxlen=config.error_log_size)
        self._resume_event = asyncio.Event()
        self._stop_event = asyncio.Event()
        self._halted = False

    def subscribe(self, handler: EventHandler):
        """Register an observer; returns a callable that unsubscribes it."""
        return self.events.subscribe(handler)

    def _transition(self, new_status: SessionStatus) -> None:
        if not validate_state_transition(self.status, new_status):
            raise TransitionError(
                f"Invalid session transition from {self.status.value} to {new_status.value}"
            )
        old_status = self.status
        self.status = new_status
        self.logger.info(f"Session {self.session_id}: {old_status.value} -> {new_status.value}")

    async def start(self) -> SessionSnapshot:
        """
        Start the session and run it until completion or stop.

        Returns:
            Snapshot of the final state

        Raises:
            TransitionError: If the session is not idle
        """
        if self.status != SessionStatus.IDLE:
            raise TransitionError(f"Cannot start a session that is {self.status.value}")
        self._transition(SessionStatus.RUNNING)
        self._resume_event.set()

        self.memory.set_topic(self.config.topic)
        await self._commit(create_system_message(f"Discussion Topic: {self.config.topic}"))

        usable = self.bindings.usable()
        for pid in COUNCIL_ORDER:
            if pid not in usable:
                self.logger.warning(f"{PARTICIPANT_NAMES[pid]} has no usable completion binding")

        self.events.emit(
            EventType.SESSION_STARTED,
            topic=self.config.topic,
            max_turns=self.config.max_turns,
            usable=[pid.value for pid in usable],
        )

        await self._run_loop()

        if self.status == SessionStatus.RUNNING:
            self._transition(SessionStatus.COMPLETED)
        self.events.emit(EventType.SESSION_COMPLETED, status=self.status.value, turn_number=self.turn_number)
        return self.snapshot()

    def pause(self) -> bool:
        """
        Pause a running session.

        In-flight requests are cancelled and their placeholders discarded;
        completed messages and the turn counter are preserved.
        """
        if self.status != SessionStatus.RUNNING:
            return False

        self._transition(SessionStatus.PAUSED)
        self._resume_event.clear()
        cancelled = self.registry.cancel_all("paused")
        self.events.emit(EventType.SESSION_PAUSED, turn_number=self.turn_number, cancelled_requests=cancelled)
        return True

    def resume(self) -> bool:
        """Resume a paused session from the next turn."""
        if self.status != SessionStatus.PAUSED:
            return False

        self._transition(SessionStatus.RUNNING)
        self._resume_event.set()
        self.events.emit(EventType.SESSION_RESUMED, turn_number=self.turn_number)
        return True

    def stop(self) -> bool:
        """Terminate the session permanently."""
        if self.status in TERMINAL_STATES:
            return False

        self._transition(SessionStatus.STOPPED)
        cancelled = self.registry.cancel_all("stopped")
        self._stop_event.set()
        self._resume_event.set()
        self.logger.info(f"Session {self.session_id} stopped ({cancelled} requests cancelled)")
        return True

    async def _run_loop(self) -> None:
        while self.turn_number < self.config.max_turns:
            if self.status in TERMINAL_STATES:
                break
            if self.status == SessionStatus.PAUSED:
                await self._resume_event.wait()
                continue

            advanced = await self._run_turn()

            if self._halted or self.status in TERMINAL_STATES:
                break
            if advanced and self.turn_number < self.config.max_turns:
                await self._interruptible_sleep(self.config.inter_turn_delay_ms)

    async def _interruptible_sleep(self, delay_ms: int) -> None:
        if delay_ms <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay_ms / 1000)
        except asyncio.TimeoutError:
            pass

    async def _run_turn(self) -> bool:
        """
        Run one turn.

        Returns:
            True if the turn completed and the counter advanced
        """
        turn = self.turn_number + 1
        eligible = self.duologue.eligible(COUNCIL_ORDER)
        pending = self.whisper.pending_bonuses()
        bidding = self.scheduler.compute_bids(eligible, self.previous_speaker)
        self.last_bidding = bidding
        # Whisper credit spent on this bid, returned if the turn is abandoned
        spent = {pid: bonus for pid, bonus in pending.items() if bonus and self.whisper.pending(pid) == 0}

        self.events.emit(
            EventType.BIDDING_COMPLETE,
            turn_number=turn,
            scores={pid.value: score for pid, score in bidding.scores.items()},
            winner=bidding.winner.value,
            eligible=[pid.value for pid in bidding.eligible],
            fallback=bidding.fallback,
        )

        if bidding.fallback:
            self._record_error(
                MissingBindingError("No council participant has a usable completion binding"),
                turn,
            )
            self._halted = True
            return False

        await self._interruptible_sleep(self.config.bidding_dwell_ms)
        if self.status != SessionStatus.RUNNING:
            self.whisper.refund(spent)
            return False

        speakers = bidding.top(self.config.speakers_per_turn)
        self.events.emit(
            EventType.TURN_STARTED,
            turn_number=turn,
            speakers=[pid.value for pid in speakers],
            duologue=self.duologue.active,
        )

        outcomes = await self._dispatch(speakers, turn)
        interrupted = any(o.result.cancelled for o in outcomes)
        produced = await self._collect(outcomes, turn)

        if not produced and not interrupted and self.status == SessionStatus.RUNNING:
            pool = [pid for pid in bidding.eligible if pid not in speakers and self.bindings.is_usable(pid)]
            if pool:
                retry = self.rng.choice(pool)
                self.logger.info(f"Turn {turn}: no speaker produced a message, retrying with {retry.value}")
                outcomes = await self._dispatch([retry], turn)
                interrupted = any(o.result.cancelled for o in outcomes)
                await self._collect(outcomes, turn)

        if interrupted or self.status != SessionStatus.RUNNING:
            self.whisper.refund(spent)
            return False

        self.turn_number = turn
        self._update_conflict_state(turn)
        return True

    async def _dispatch(self, speakers: List[ParticipantId], turn: int) -> List[RequestOutcome]:
        """Run one request per speaker concurrently and wait for all of them."""
        options = CompletionOptions(
            idle_timeout_ms=self.config.idle_timeout_ms,
            hard_timeout_ms=self.config.hard_timeout_ms,
        )
        return list(await asyncio.gather(*(self._request(pid, turn, options) for pid in speakers)))

    async def _request(self, participant_id: ParticipantId, turn: int, options: CompletionOptions) -> RequestOutcome:
        participant = self.bindings.config_for(participant_id)
        placeholder = create_placeholder(participant_id, turn, participant.model)
        key = f"{turn}:{placeholder.id}"
        token = self.registry.register(key)

        def emit_chunk(text: str) -> None:
            if token.cancelled:
                return
            self.events.emit(
                EventType.MESSAGE_CHUNK,
                message_id=placeholder.id,
                participant_id=participant_id.value,
                content=text,
            )

        coalescer = ChunkCoalescer(self.config.chunk_flush_interval_ms, emit_chunk)

        def on_chunk(chunk: str) -> None:
            if token.cancelled or not placeholder.is_streaming:
                return
            placeholder.append_chunk(chunk)
            coalescer.push(chunk)

        history = build_prompt(participant, self.memory.build_context(participant_id), self.memory)

        try:
            result = await self.completion_service.generate(
                participant, history, on_chunk=on_chunk, token=token, options=options
            )
        except Exception as e:
            self.logger.error(f"Completion service raised for {participant_id.value}: {e}")
            result = CompletionResult(success=False, error=f"{type(e).__name__}: {e}")
        finally:
            self.registry.release(key)

        # A completion that lands after its token was cancelled still belongs to the aborted turn
        if token.cancelled and not result.cancelled:
            result = result.model_copy(update={"cancelled": True})

        if result.cancelled:
            coalescer.discard()
        else:
            coalescer.flush()

        return RequestOutcome(
            participant_id=participant_id,
            model=participant.model,
            message=placeholder,
            result=result,
        )

    async def _collect(self, outcomes: List[RequestOutcome], turn: int) -> List[Message]:
        """
        Finalize and commit the outcomes of one dispatch.

        Returns:
            Messages that ended up with content
        """
        produced: List[Message] = []

        for outcome in outcomes:
            pid = outcome.participant_id
            result = outcome.result
            message = outcome.message

            if result.cancelled:
                self.logger.info(f"Discarded cancelled response from {pid.value}")
                continue

            raw = result.content or message.content
            cleaned, quote_ids, reactions = extract_actions(raw)
            message.metadata.quoted_message_ids = [q for q in quote_ids if self.memory.get_entry(q) is not None]

            error = None if result.success or result.timed_out else (result.error or "completion failed")
            message.finalize(
                content=cleaned,
                token_usage=result.token_usage,
                error=error,
                timed_out=result.timed_out,
                latency_ms=result.latency_ms,
            )

            if result.timed_out:
                self._record_error(RequestTimeoutError(result.error or "timeout", participant_id=pid.value), turn)
            elif error is not None:
                self._record_error(ProviderFailureError(error, participant_id=pid.value), turn)

            if _has_usage(result.token_usage):
                self.ledger.record_usage(pid, result.token_usage, outcome.model)
                self.events.emit(
                    EventType.COST_UPDATED,
                    participant_id=pid.value,
                    costs=self.ledger.snapshot().model_dump(mode="json"),
                )

            await self._commit(message)

            if message.has_content:
                for reaction in reactions:
                    await self._apply_reaction(reaction, pid)
                self.previous_speaker = pid
                self.fairness.record_speaker(pid)
                produced.append(message)

        return produced

    async def _commit(self, message: Message) -> None:
        self._messages.append(message)
        if message.has_content:
            self.memory.add_message(message)
        if self.transcript_store is not None:
            await self.transcript_store.store_message(self.session_id, message)

        self.events.emit(
            EventType.MESSAGE_COMPLETE,
            message_id=message.id,
            participant_id=message.participant_id.value,
            status=message.status.value,
            timed_out=message.metadata.timed_out,
        )

    async def _apply_reaction(self, reaction: ExtractedReaction, reacting: ParticipantId) -> None:
        if not self.memory.record_reaction(reaction.target_id, reacting, reaction.reaction):
            return
        if self.transcript_store is not None:
            target = self.memory.get_entry(reaction.target_id).message
            await self.transcript_store.update_message(self.session_id, target)

    def _record_error(self, error: CouncilError, turn: Optional[int] = None) -> SessionError:
        entry = SessionError.from_exception(error, turn_number=turn)
        self._errors.append(entry)
        self.logger.warning(f"Turn {turn}: {entry.kind.value} ({entry.participant_id}): {entry.detail}")
        self.events.emit(
            EventType.ERROR,
            kind=entry.kind.value,
            participant_id=entry.participant_id,
            detail=entry.detail,
            turn_number=turn,
        )
        return entry

    def _update_conflict_state(self, turn: int) -> None:
        """Recompute conflicts and advance the duo-logue and whisper state."""
        ended: Optional[DuoLogueEnded] = None
        if self.duologue.active:
            ended = self.duologue.complete_turn()

        evaluation = self.detector.evaluate_all(self.memory.messages(), COUNCIL_ORDER)
        self.conflict_evaluation = evaluation
        self.events.emit(
            EventType.CONFLICT_UPDATED,
            turn_number=turn,
            pairs=[
                {"participants": [pid.value for pid in p.participants], "raw_score": p.raw_score, "score": p.score}
                for p in evaluation.pairs
            ],
            strongest=evaluation.strongest.model_dump(mode="json") if evaluation.strongest else None,
        )

        if ended is None and self.duologue.active:
            ended = self.duologue.check_conflict(evaluation, self.detector.threshold)

        if ended is not None:
            self.active_conflict = None
            self.events.emit(
                EventType.DUOLOGUE_ENDED,
                turn_number=turn,
                participants=[pid.value for pid in ended.duologue.participants],
                reason=ended.reason.value,
            )
            return

        if self.duologue.active:
            return

        strongest = evaluation.strongest
        self.active_conflict = strongest
        if strongest is None:
            return

        self.events.emit(
            EventType.CONFLICT_DETECTED,
            turn_number=turn,
            pair=[pid.value for pid in strongest.pair],
            raw_score=strongest.raw_score,
            threshold=strongest.threshold,
        )

        duologue = self.duologue.start_if_needed(strongest)
        if duologue is not None:
            self.events.emit(
                EventType.DUOLOGUE_STARTED,
                turn_number=turn,
                participants=[pid.value for pid in duologue.participants],
                remaining_turns=duologue.remaining_turns,
            )

        directive = self.whisper.observe_conflict(strongest)
        if directive is not None:
            self._emit_whisper(directive)

    def _emit_whisper(self, directive: WhisperDirective) -> None:
        self.events.emit(
            EventType.WHISPER_SENT,
            whisper_id=directive.id,
            sender=directive.sender.value,
            recipient=directive.recipient.value,
            kind=directive.kind.value,
            bid_bonus=directive.payload.bid_bonus,
        )

    def send_whisper(
        self,
        sender: ParticipantId,
        recipient: ParticipantId,
        proposed_action: str,
        bid_bonus: int = 0,
        kind: WhisperKind = WhisperKind.STRATEGY,
    ) -> WhisperDirective:
        """Send an explicit whisper; it only affects the recipient's next bid."""
        directive = self.whisper.send(sender, recipient, proposed_action, bid_bonus=bid_bonus, kind=kind)
        self._emit_whisper(directive)
        return directive

    async def add_user_message(self, content: str) -> Message:
        """Add a message from the human user to the conversation."""
        message = Message(participant_id=ParticipantId.USER, content=content)
        await self._commit(message)
        return message

    def messages(self) -> List[Message]:
        return [m.model_copy(deep=True) for m in self._messages]

    def errors(self) -> List[SessionError]:
        return [e.model_copy() for e in self._errors]

    def snapshot(self) -> SessionSnapshot:
        """Deep, read-only copy of the current session state."""
        return SessionSnapshot(
            session_id=self.session_id,
            status=self.status,
            topic=self.config.topic,
            turn_number=self.turn_number,
            max_turns=self.config.max_turns,
            messages=self.messages(),
            last_bidding=self.last_bidding.model_copy(deep=True) if self.last_bidding else None,
            conflict=self.conflict_evaluation.model_copy(deep=True) if self.conflict_evaluation else None,
            active_conflict=self.active_conflict.model_copy() if self.active_conflict else None,
            duologue=self.duologue.current.model_copy() if self.duologue.current else None,
            whispers=self.whisper.log(),
            pending_whisper_bonus=self.whisper.pending_bonuses(),
            costs=self.ledger.snapshot(),
            errors=self.errors(),
            speaking_counts=self.memory.speaking_counts(),
            recent_speaking_counts=self.fairness.speaking_counts(),
        )

    def transcript(self) -> str:
        """Plain-text rendering of the finalized messages."""
        lines = []
        for message in self._messages:
            if not message.has_content:
                continue
            speaker = PARTICIPANT_NAMES.get(message.participant_id, message.participant_id.value)
            lines.append(f"{speaker}: {message.content}")
        return "\n\n".join(lines)
