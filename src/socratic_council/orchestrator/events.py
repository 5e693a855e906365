"""
Outbound session events.

Observers (a UI, the CLI, tests) subscribe to a session and receive
``SessionEvent`` objects carrying only the minimal structured payload.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List

from pydantic import BaseModel, Field

from socratic_council.errors import utc_now


class EventType(str, Enum):
    """Types of events emitted by a session."""

    SESSION_STARTED = "session_started"
    SESSION_PAUSED = "session_paused"
    SESSION_RESUMED = "session_resumed"
    SESSION_COMPLETED = "session_completed"
    TURN_STARTED = "turn_started"
    MESSAGE_CHUNK = "message_chunk"
    MESSAGE_COMPLETE = "message_complete"
    BIDDING_COMPLETE = "bidding_complete"
    COST_UPDATED = "cost_updated"
    CONFLICT_DETECTED = "conflict_detected"
    CONFLICT_UPDATED = "conflict_updated"
    DUOLOGUE_STARTED = "duologue_started"
    DUOLOGUE_ENDED = "duologue_ended"
    WHISPER_SENT = "whisper_sent"
    ERROR = "error"


class SessionEvent(BaseModel):
    """A single event emitted to observers."""

    type: EventType = Field(..., description="Event type")
    session_id: str = Field(..., description="Session that emitted the event")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Minimal structured payload")
    timestamp: datetime = Field(default_factory=utc_now, description="Emission time")


EventHandler = Callable[[SessionEvent], None]


class EventBus:
    """Synchronous fan-out of session events to subscribers."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._handlers: List[EventHandler] = []
        self.logger = logging.getLogger("socratic_council.orchestrator.events")

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler.

        Returns:
            A callable that removes the handler again
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event_type: EventType, **payload: Any) -> SessionEvent:
        event = SessionEvent(type=event_type, session_id=self.session_id, payload=payload)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Error in event handler for {event_type.value}: {e}")
        return event
