"""Error taxonomy for the attendance engine.

Every error carries a stable ``code`` and the HTTP ``status_code`` the calling
API layer should answer with. Validation errors (``MissingReason``,
``MissingPhoto``, ``NotFound``, ``AlreadyDecided``) are raised before any
state change. Transient errors (``LocationUnavailable``,
``ProviderUnavailable``) leave session state untouched and may be retried.
``MaxAttemptsExceeded`` is terminal and asks for re-registration.
"""
from typing import Any, Dict, Optional


class AttendanceError(Exception):
    """Base class for all engine errors."""

    code = 'attendance_error'
    status_code = 400
    retryable = False

    def __init__(self, message: str = None, **details: Any):
        super().__init__(message or self.__class__.__doc__)
        self.message = message or self.__class__.__doc__
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        result = {'code': self.code, 'message': self.message}
        if self.details:
            result['details'] = self.details
        return result


class ValidationError(AttendanceError):
    """Invalid input."""
    code = 'validation_error'
    status_code = 400


class NotFound(AttendanceError):
    """Requested entity does not exist."""
    code = 'not_found'
    status_code = 404


class AlreadyDecided(AttendanceError):
    """Approval request has already been decided."""
    code = 'already_decided'
    status_code = 409


# =================== LOCATION ===================

class LocationUnavailable(AttendanceError):
    """No usable location fix could be obtained."""
    code = 'location_unavailable'
    status_code = 503
    retryable = True


class PermissionDenied(LocationUnavailable):
    """Location permission was denied."""
    code = 'location_permission_denied'


class LocationProviderUnavailable(LocationUnavailable):
    """Location provider is unavailable."""
    code = 'location_provider_unavailable'


class LocationTimeout(LocationUnavailable):
    """Location provider timed out."""
    code = 'location_timeout'


class ZoneMismatch(AttendanceError):
    """Location fix is outside every active zone."""
    code = 'zone_mismatch'
    status_code = 409

    def __init__(self, message: str = None, match=None, **details: Any):
        super().__init__(message, **details)
        self.match = match


# =================== VERIFICATION ===================

class ProviderUnavailable(AttendanceError):
    """Verification provider could not be reached."""
    code = 'provider_unavailable'
    status_code = 503
    retryable = True


class VerificationFailed(AttendanceError):
    """Identity verification failed."""
    code = 'verification_failed'
    status_code = 401
    retryable = True

    def __init__(self, message: str = None, attempts_remaining: int = 0,
                 session=None, **details: Any):
        super().__init__(message, attempts_remaining=attempts_remaining, **details)
        self.attempts_remaining = attempts_remaining
        self.session = session


class MaxAttemptsExceeded(AttendanceError):
    """Maximum verification attempts reached; face re-registration required."""
    code = 'max_attempts_exceeded'
    status_code = 403
    requires_reregistration = True

    def __init__(self, message: str = None, session=None, **details: Any):
        super().__init__(message, **details)
        self.session = session


class SessionAlreadyOpen(AttendanceError):
    """A verification session is already open for this clock event."""
    code = 'session_already_open'
    status_code = 409

    def __init__(self, message: str = None, session_id: Optional[str] = None, **details: Any):
        super().__init__(message, session_id=session_id, **details)
        self.session_id = session_id


class InvalidTransition(AttendanceError):
    """Event is not allowed in the current session state."""
    code = 'invalid_transition'
    status_code = 409


# =================== TEMPORARY WORKPLACE ===================

class MissingReason(AttendanceError):
    """A reason is required for temporary workplace punches."""
    code = 'missing_reason'
    status_code = 400


class MissingPhoto(AttendanceError):
    """A photo is required for temporary workplace punches."""
    code = 'missing_photo'
    status_code = 400


class TemporaryWorkplaceDisabled(AttendanceError):
    """Temporary workplace punches are not allowed here."""
    code = 'temporary_workplace_disabled'
    status_code = 403
