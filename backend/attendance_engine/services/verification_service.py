"""Identity verification sessions for clock events.

The controller runs a bounded number of verification attempts for one clock
event. It does not match faces itself: an injected ``VerificationProvider``
answers each sample and the controller interprets the answer through the
pure state machine in ``verification_state``.

Rules:
- One open session per (user, attendance event); creation is check-and-create
  under a keyed lock, backed by a unique ``open_key`` column.
- A provider answer of ``success=False`` consumes an attempt.
- A provider that cannot be reached (error or timeout) does not consume one.
- The last failed attempt ends the session as ``failed`` and asks for face
  re-registration.
"""
import logging
from collections.abc import Mapping
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from attendance_engine import db
from attendance_engine.models.enums import PunchType, SessionState
from attendance_engine.models.location import LocationFix
from attendance_engine.models.verification import VerificationSession, VerificationAttempt
from attendance_engine.services.geofence_service import GeofenceService
from attendance_engine.services.notification_service import notifications as default_notifications
from attendance_engine.services.verification_state import (
    AttemptSnapshot, SessionResult, SessionSnapshot,
    Start, SampleSubmitted, ProviderResponded, ProviderUnreachable, Cancel,
    transition
)
from attendance_engine.utils.errors import (
    NotFound, ProviderUnavailable, VerificationFailed,
    MaxAttemptsExceeded, SessionAlreadyOpen, LocationUnavailable
)
from attendance_engine.utils.helpers import utcnow, generate_id
from attendance_engine.utils.locks import get_keyed_lock
from attendance_engine.utils.validators import Validator

logger = logging.getLogger(__name__)

POOL_EXTENSION = 'verification_provider_pool'

def init_provider_pool(app) -> None:
    """Attach the thread pool provider calls run on, so timeouts can be enforced.

    A call that outlives its timeout keeps its worker until the provider
    returns. Once all ``VERIFICATION_PROVIDER_WORKERS`` are held by hung
    calls, later samples wait in the queue and fail as ``ProviderUnavailable``.
    """
    app.extensions[POOL_EXTENSION] = ThreadPoolExecutor(
        max_workers=app.config['VERIFICATION_PROVIDER_WORKERS'],
        thread_name_prefix='verification-provider'
    )

@dataclass(frozen=True)
class ProviderResult:
    """Answer of a verification provider for one sample."""
    success: bool
    confidence_percent: float
    failure_reason: Optional[str] = None

class VerificationProvider:
    """Face-matching capability injected into the controller.

    Implementations return a ``ProviderResult`` (or a mapping with the same
    keys) and raise ``ProviderUnavailable`` when the matching backend, the
    camera or the network cannot be used.
    """

    def verify(self, sample_ref: str) -> ProviderResult:
        raise NotImplementedError

@dataclass
class VerificationOutcome:
    """Successful verification returned to the caller."""
    session: VerificationSession
    attempt: VerificationAttempt
    snapshot: SessionSnapshot

class VerificationSessionController:
    """Orchestrates verification attempts for clock events."""

    def __init__(
        self,
        provider: VerificationProvider,
        max_attempts: Optional[int] = None,
        provider_timeout: Optional[float] = None,
        notifier=None
    ):
        self.provider = provider
        self._max_attempts = max_attempts
        self._provider_timeout = provider_timeout
        self.notifier = notifier or default_notifications

    @property
    def max_attempts(self) -> int:
        if self._max_attempts is not None:
            return self._max_attempts
        return current_app.config['VERIFICATION_MAX_ATTEMPTS']

    @property
    def provider_timeout(self) -> float:
        if self._provider_timeout is not None:
            return self._provider_timeout
        return current_app.config['VERIFICATION_PROVIDER_TIMEOUT']

    # =================== SESSION LIFECYCLE ===================

    def open_session(
        self,
        user_id: str,
        attendance_event_id: str,
        session_type,
        zone_id: Optional[int] = None,
        location_token: Optional[str] = None
    ) -> VerificationSession:
        """Create the session for a clock event whose fix matched a zone."""
        session_type = PunchType(session_type)

        if location_token is not None:
            claims = GeofenceService.verify_location_token(location_token)
            if claims['user_id'] != user_id or claims['attendance_event_id'] != attendance_event_id:
                raise LocationUnavailable("Location verification does not match this clock event")
            zone_id = claims['zone_id']

        open_key = VerificationSession.make_open_key(user_id, attendance_event_id)

        with get_keyed_lock().hold(f"session:{open_key}"):
            existing = VerificationSession.query.filter_by(open_key=open_key).first()
            if existing:
                raise SessionAlreadyOpen(
                    f"Verification already in progress for event {attendance_event_id}",
                    session_id=existing.id
                )

            snapshot = SessionSnapshot(
                id=generate_id('vs'),
                user_id=user_id,
                attendance_event_id=attendance_event_id,
                session_type=session_type,
                max_attempts=self.max_attempts,
                started_at=utcnow()
            )
            snapshot = transition(snapshot, Start())

            session = VerificationSession(
                id=snapshot.id,
                user_id=user_id,
                attendance_event_id=attendance_event_id,
                session_type=session_type,
                state=snapshot.state,
                max_attempts=snapshot.max_attempts,
                zone_id=zone_id,
                open_key=open_key,
                started_at=snapshot.started_at
            )
            db.session.add(session)
            try:
                db.session.commit()
            except IntegrityError:
                # Another process won the race for this clock event
                db.session.rollback()
                existing = VerificationSession.query.filter_by(open_key=open_key).first()
                raise SessionAlreadyOpen(
                    f"Verification already in progress for event {attendance_event_id}",
                    session_id=existing.id if existing else None
                )

        logger.info(
            "Opened verification session %s for user=%s event=%s (%s, max %d attempts)",
            session.id, user_id, attendance_event_id, session_type.value, session.max_attempts
        )
        return session

    def submit_sample(
        self,
        session_id: str,
        image_ref: str,
        location_fix: Optional[LocationFix] = None,
        timeout: Optional[float] = None
    ) -> VerificationOutcome:
        """Verify one captured sample.

        Returns the outcome on success. Raises ``VerificationFailed`` when the
        provider rejects the sample and attempts remain, ``MaxAttemptsExceeded``
        when it rejects the last one, and ``ProviderUnavailable`` when the
        provider cannot answer in time (no attempt consumed).
        """
        session = self.get_session(session_id)
        open_key = VerificationSession.make_open_key(session.user_id, session.attendance_event_id)

        with get_keyed_lock().hold(f"session:{open_key}"):
            db.session.refresh(session)
            snapshot = self.to_snapshot(session)
            verifying = transition(snapshot, SampleSubmitted(image_ref=image_ref, location_fix=location_fix))

            try:
                result = self._call_provider(image_ref, timeout)
            except ProviderUnavailable as e:
                # Back to capturing with no attempt recorded
                self.apply_snapshot(session, transition(verifying, ProviderUnreachable(reason=e.message)))
                db.session.commit()
                logger.warning("Provider unavailable for session %s: %s", session.id, e.message)
                raise

            after = transition(verifying, ProviderResponded(
                success=bool(result.success),
                confidence_percent=Validator.validate_confidence(result.confidence_percent),
                failure_reason=result.failure_reason
            ))
            self.apply_snapshot(session, after)
            db.session.commit()

        attempt = session.attempts[-1]
        logger.info(
            "Session %s attempt %d/%d: success=%s confidence=%.1f",
            session.id, attempt.attempt_number, session.max_attempts,
            attempt.success, attempt.confidence_percent
        )

        if after.state == SessionState.FAILED:
            logger.warning(
                "Session %s failed after %d attempts; re-registration required for user %s",
                session.id, after.attempt_count, session.user_id
            )
            self.notifier.emit(
                self.notifier.VERIFICATION_FAILED, session.id,
                type=session.session_type.value, status=session.state.value, sender=self
            )
            raise MaxAttemptsExceeded(
                "Maximum verification attempts reached. Please re-register your face.",
                session=session,
                session_id=session.id,
                total_attempts=after.attempt_count
            )

        if after.state == SessionState.CAPTURING:
            raise VerificationFailed(
                attempt.failure_reason,
                attempts_remaining=after.attempts_remaining,
                session=session,
                session_id=session.id
            )

        return VerificationOutcome(session=session, attempt=attempt, snapshot=after)

    def cancel_session(self, session_id: str) -> VerificationSession:
        """Abandon an open session; its attempts stay as audit history."""
        session = self.get_session(session_id)
        open_key = VerificationSession.make_open_key(session.user_id, session.attendance_event_id)

        with get_keyed_lock().hold(f"session:{open_key}"):
            db.session.refresh(session)
            after = transition(self.to_snapshot(session), Cancel())
            self.apply_snapshot(session, after)
            db.session.commit()

        logger.info("Cancelled verification session %s after %d attempts", session.id, len(session.attempts))
        return session

    # =================== QUERIES ===================

    def get_session(self, session_id: str) -> VerificationSession:
        session = VerificationSession.get_by_id(session_id)
        if session is None:
            raise NotFound(f"Verification session {session_id} not found")
        return session

    def get_open_session(self, user_id: str, attendance_event_id: str) -> Optional[VerificationSession]:
        open_key = VerificationSession.make_open_key(user_id, attendance_event_id)
        return VerificationSession.query.filter_by(open_key=open_key).first()

    def session_summary(self, session_id: str) -> Dict[str, Any]:
        """Summary of a session for the calling layer."""
        session = self.get_session(session_id)
        snapshot = self.to_snapshot(session)
        confidences = [a.confidence_percent for a in snapshot.attempts]

        return {
            'session_id': session.id,
            'user_id': session.user_id,
            'attendance_event_id': session.attendance_event_id,
            'session_type': session.session_type.value,
            'verification_summary': {
                'state': snapshot.state.value,
                'attempts': snapshot.attempt_count,
                'max_attempts': snapshot.max_attempts,
                'attempts_remaining': snapshot.attempts_remaining,
                'average_confidence': sum(confidences) / len(confidences) if confidences else None,
                'result': snapshot.result.to_dict() if snapshot.result else None
            },
            'attempts': [attempt.to_dict() for attempt in session.attempts],
            'timing': {
                'started_at': session.started_at.isoformat(),
                'completed_at': session.completed_at.isoformat() if session.completed_at else None,
                'duration_seconds': (session.completed_at - session.started_at).total_seconds()
                if session.completed_at else None
            },
            'recommendations': self._generate_recommendations(snapshot)
        }

    # =================== PERSISTENCE MAPPING ===================

    @staticmethod
    def to_snapshot(session: VerificationSession) -> SessionSnapshot:
        attempts = tuple(
            AttemptSnapshot(
                id=attempt.id,
                session_id=session.id,
                attempt_number=attempt.attempt_number,
                captured_image_ref=attempt.captured_image_ref,
                success=attempt.success,
                confidence_percent=attempt.confidence_percent,
                captured_at=attempt.captured_at,
                failure_reason=attempt.failure_reason,
                location_fix=attempt.location_fix
            )
            for attempt in session.attempts
        )
        return SessionSnapshot(
            id=session.id,
            user_id=session.user_id,
            attendance_event_id=session.attendance_event_id,
            session_type=session.session_type,
            max_attempts=session.max_attempts,
            started_at=session.started_at,
            state=session.state,
            attempts=attempts,
            completed_at=session.completed_at,
            cancelled_at=session.cancelled_at,
            result=SessionResult.from_dict(session.result)
        )

    @staticmethod
    def apply_snapshot(session: VerificationSession, snapshot: SessionSnapshot) -> None:
        """Copy snapshot state onto the model, appending new attempts only."""
        for attempt in snapshot.attempts[len(session.attempts):]:
            row = VerificationAttempt(
                id=attempt.id,
                attempt_number=attempt.attempt_number,
                captured_image_ref=attempt.captured_image_ref,
                success=attempt.success,
                confidence_percent=attempt.confidence_percent,
                failure_reason=attempt.failure_reason,
                captured_at=attempt.captured_at
            )
            row.location_fix = attempt.location_fix
            session.attempts.append(row)

        session.state = snapshot.state
        session.completed_at = snapshot.completed_at
        session.cancelled_at = snapshot.cancelled_at
        session.result = snapshot.result.to_dict() if snapshot.result else None
        if snapshot.is_terminal:
            session.open_key = None

    # =================== PROVIDER ===================

    def _call_provider(self, image_ref: str, timeout: Optional[float]) -> ProviderResult:
        timeout = self.provider_timeout if timeout is None else timeout
        future = current_app.extensions[POOL_EXTENSION].submit(self.provider.verify, image_ref)

        try:
            result = future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise ProviderUnavailable(f"Verification provider did not answer within {timeout:g}s")
        except ProviderUnavailable:
            raise
        except (ConnectionError, TimeoutError, OSError) as e:
            raise ProviderUnavailable(f"Verification provider unreachable: {e}")

        if isinstance(result, Mapping):
            result = ProviderResult(
                success=result['success'],
                confidence_percent=result['confidence_percent'],
                failure_reason=result.get('failure_reason')
            )
        return result

    @staticmethod
    def _generate_recommendations(snapshot: SessionSnapshot) -> List[str]:
        """Hints for the user based on the session state."""
        if snapshot.state == SessionState.COMPLETED:
            return ["Identity verified"]
        if snapshot.state == SessionState.CANCELLED:
            return ["Verification was cancelled"]

        recommendations = []
        if any(not attempt.success for attempt in snapshot.attempts):
            recommendations.append("Make sure the lighting is good and your face is clearly visible")
            recommendations.append("Clean the front camera lens")
        if snapshot.state == SessionState.FAILED:
            recommendations.append("You need to re-register your face before clocking in again")
        elif snapshot.attempts:
            recommendations.append(f"{snapshot.attempts_remaining} attempt(s) remaining")

        return recommendations or ["Capture a photo to start verification"]
