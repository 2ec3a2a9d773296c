"""Models package with all models."""
from .base import BaseModel
from .enums import PunchType, SessionState, ApprovalType, ApprovalStatus
from .location import LocationFix
from .geofence_zone import GeofenceZone
from .verification import VerificationSession, VerificationAttempt
from .temporary_workplace import TemporaryWorkplaceRecord, ReusableWorkplace
from .approval import ApprovalRequest

__all__ = [
    'BaseModel', 'PunchType', 'SessionState', 'ApprovalType', 'ApprovalStatus',
    'LocationFix', 'GeofenceZone',
    'VerificationSession', 'VerificationAttempt',
    'TemporaryWorkplaceRecord', 'ReusableWorkplace',
    'ApprovalRequest'
]
