"""
Error taxonomy for Socratic Council.

Individual participant failures never abort a session; these exceptions are
raised at component boundaries and converted into ``SessionError`` entries by
the session controller.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Classes of failure recorded in a session's error log."""

    MISSING_BINDING = "missing_binding"      # No usable credential/model
    REQUEST_TIMEOUT = "request_timeout"      # Idle or hard timeout (soft failure)
    REQUEST_CANCELLED = "request_cancelled"  # Pause/stop, never logged
    PROVIDER_FAILURE = "provider_failure"    # Non-success completion result


class CouncilError(Exception):
    """Base class for all Socratic Council errors."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, participant_id: Optional[str] = None):
        super().__init__(message)
        self.participant_id = participant_id


class MissingBindingError(CouncilError):
    """Raised when a participant has no usable completion binding."""

    kind = ErrorKind.MISSING_BINDING


class RequestTimeoutError(CouncilError):
    """Raised when a completion request hits its idle or hard timeout."""

    kind = ErrorKind.REQUEST_TIMEOUT

    def __init__(self, message: str, participant_id: Optional[str] = None, idle: bool = False):
        super().__init__(message, participant_id)
        self.idle = idle


class RequestCancelledError(CouncilError):
    """Raised when a request is cancelled by pause or stop."""

    kind = ErrorKind.REQUEST_CANCELLED


class ProviderFailureError(CouncilError):
    """Raised when a completion service reports a failure."""

    kind = ErrorKind.PROVIDER_FAILURE


class TransitionError(CouncilError):
    """Exception raised for invalid session state transitions."""
    pass


class MessageFinalizedError(CouncilError):
    """Raised when a message is finalized or streamed into a second time."""
    pass


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class SessionError(BaseModel):
    """A single entry in a session's bounded error log."""

    kind: ErrorKind = Field(..., description="Class of failure")
    participant_id: Optional[str] = Field(None, description="Participant that failed, if any")
    detail: str = Field(..., description="Human-readable description")
    turn_number: Optional[int] = Field(None, description="Turn in which the failure happened")
    timestamp: datetime = Field(default_factory=utc_now, description="When the failure was recorded")

    @classmethod
    def from_exception(cls, error: CouncilError, turn_number: Optional[int] = None) -> "SessionError":
        return cls(
            kind=error.kind or ErrorKind.PROVIDER_FAILURE,
            participant_id=error.participant_id,
            detail=str(error),
            turn_number=turn_number,
        )
