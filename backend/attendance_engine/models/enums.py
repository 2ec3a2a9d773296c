"""Enumerations shared by the engine models."""
from enum import Enum

class PunchType(Enum):
    """Clock event direction."""
    CLOCK_IN = 'clock-in'
    CLOCK_OUT = 'clock-out'

class SessionState(Enum):
    """Verification session states."""
    PENDING = 'pending'
    CAPTURING = 'capturing'
    VERIFYING = 'verifying'
    COMPLETED = 'completed'
    FAILED = 'failed'
    CANCELLED = 'cancelled'

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED)

class ApprovalType(Enum):
    """Exception kinds a manager decides on."""
    OVERTIME = 'overtime'
    LATE = 'late'
    EARLY_LEAVE = 'early-leave'
    TEMPORARY_WORKPLACE = 'temporary-workplace'

class ApprovalStatus(Enum):
    """Approval request status."""
    PENDING = 'pending'
    APPROVED = 'approved'
    REJECTED = 'rejected'

def enum_column(enum_class, name: str):
    """Enum column that stores member values ('clock-in') rather than names."""
    from attendance_engine import db
    return db.Enum(
        enum_class,
        name=name,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True
    )
