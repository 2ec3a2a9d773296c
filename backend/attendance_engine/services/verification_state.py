"""Verification session state machine as data.

A session is a frozen ``SessionSnapshot``; ``transition(snapshot, event)``
returns the next snapshot or raises ``InvalidTransition``. Nothing here
touches the database, the provider or the clock: timestamps and attempt ids
travel on the events.

    pending --Start--> capturing --SampleSubmitted--> verifying
    verifying --ProviderResponded(success)--> completed
    verifying --ProviderResponded(failure), attempts left--> capturing
    verifying --ProviderResponded(failure), last attempt--> failed
    verifying --ProviderUnreachable--> capturing   (no attempt recorded)
    pending|capturing|verifying --Cancel--> cancelled
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Optional, Tuple

from attendance_engine.models.enums import PunchType, SessionState
from attendance_engine.models.location import LocationFix
from attendance_engine.utils.errors import InvalidTransition
from attendance_engine.utils.helpers import utcnow, generate_id

@dataclass(frozen=True)
class AttemptSnapshot:
    """Immutable record of one verification outcome."""
    id: str
    session_id: str
    attempt_number: int
    captured_image_ref: str
    success: bool
    confidence_percent: float
    captured_at: datetime
    failure_reason: Optional[str] = None
    location_fix: Optional[LocationFix] = None

@dataclass(frozen=True)
class SessionResult:
    """Outcome recorded when a session reaches a terminal state."""
    success: bool
    total_attempts: int
    average_confidence: Optional[float]
    final_image_ref: Optional[str] = None
    requires_reregistration: bool = False

    def to_dict(self) -> dict:
        return {
            'success': self.success,
            'total_attempts': self.total_attempts,
            'average_confidence': self.average_confidence,
            'final_image_ref': self.final_image_ref,
            'requires_reregistration': self.requires_reregistration
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['SessionResult']:
        if not data:
            return None
        return cls(**data)

@dataclass(frozen=True)
class SessionSnapshot:
    """Verification session state."""
    id: str
    user_id: str
    attendance_event_id: str
    session_type: PunchType
    max_attempts: int
    started_at: datetime
    state: SessionState = SessionState.PENDING
    attempts: Tuple[AttemptSnapshot, ...] = ()
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    result: Optional[SessionResult] = None
    # Sample under verification while in ``verifying``
    pending_image_ref: Optional[str] = None
    pending_fix: Optional[LocationFix] = None

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)

    @property
    def attempts_remaining(self) -> int:
        return max(0, self.max_attempts - len(self.attempts))

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def last_attempt(self) -> Optional[AttemptSnapshot]:
        return self.attempts[-1] if self.attempts else None

# =================== EVENTS ===================

@dataclass(frozen=True)
class Start:
    """Session created; camera ready."""

@dataclass(frozen=True)
class SampleSubmitted:
    """A photo/biometric sample was captured for the current attempt."""
    image_ref: str
    location_fix: Optional[LocationFix] = None

@dataclass(frozen=True)
class ProviderResponded:
    """The verification provider answered for the pending sample."""
    success: bool
    confidence_percent: float
    failure_reason: Optional[str] = None
    at: datetime = field(default_factory=utcnow)
    attempt_id: str = field(default_factory=lambda: generate_id('va'))

@dataclass(frozen=True)
class ProviderUnreachable:
    """The provider could not be reached; the attempt slot is not consumed."""
    reason: str = ''

@dataclass(frozen=True)
class Cancel:
    """Caller abandoned the session."""
    at: datetime = field(default_factory=utcnow)

# =================== TRANSITIONS ===================

def _average(values) -> Optional[float]:
    values = list(values)
    if not values:
        return None
    return sum(values) / len(values)

def _record_attempt(session: SessionSnapshot, event: ProviderResponded) -> SessionSnapshot:
    attempt = AttemptSnapshot(
        id=event.attempt_id,
        session_id=session.id,
        attempt_number=len(session.attempts) + 1,
        captured_image_ref=session.pending_image_ref,
        success=event.success,
        confidence_percent=event.confidence_percent,
        captured_at=event.at,
        failure_reason=None if event.success else (event.failure_reason or 'Face verification failed'),
        location_fix=session.pending_fix
    )
    attempts = session.attempts + (attempt,)

    if event.success:
        return replace(
            session,
            state=SessionState.COMPLETED,
            attempts=attempts,
            completed_at=event.at,
            pending_image_ref=None,
            pending_fix=None,
            result=SessionResult(
                success=True,
                total_attempts=len(attempts),
                average_confidence=_average(a.confidence_percent for a in attempts if a.success),
                final_image_ref=attempt.captured_image_ref
            )
        )

    if attempt.attempt_number >= session.max_attempts:
        return replace(
            session,
            state=SessionState.FAILED,
            attempts=attempts,
            completed_at=event.at,
            pending_image_ref=None,
            pending_fix=None,
            result=SessionResult(
                success=False,
                total_attempts=len(attempts),
                average_confidence=_average(a.confidence_percent for a in attempts),
                requires_reregistration=True
            )
        )

    return replace(
        session,
        state=SessionState.CAPTURING,
        attempts=attempts,
        pending_image_ref=None,
        pending_fix=None
    )

def transition(session: SessionSnapshot, event) -> SessionSnapshot:
    """Apply ``event`` to ``session`` and return the next snapshot."""
    state = session.state

    if isinstance(event, Cancel):
        if state.is_terminal:
            raise InvalidTransition(f"Cannot cancel a {state.value} session")
        return replace(
            session,
            state=SessionState.CANCELLED,
            cancelled_at=event.at,
            completed_at=event.at,
            pending_image_ref=None,
            pending_fix=None
        )

    if isinstance(event, Start) and state == SessionState.PENDING:
        return replace(session, state=SessionState.CAPTURING)

    if isinstance(event, SampleSubmitted) and state == SessionState.CAPTURING:
        if not event.image_ref:
            raise InvalidTransition("A captured image is required")
        return replace(
            session,
            state=SessionState.VERIFYING,
            pending_image_ref=event.image_ref,
            pending_fix=event.location_fix
        )

    if isinstance(event, ProviderResponded) and state == SessionState.VERIFYING:
        return _record_attempt(session, event)

    if isinstance(event, ProviderUnreachable) and state == SessionState.VERIFYING:
        return replace(session, state=SessionState.CAPTURING, pending_image_ref=None, pending_fix=None)

    raise InvalidTransition(
        f"{type(event).__name__} is not allowed while session is {state.value}"
    )
