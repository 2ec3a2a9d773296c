"""Identity verification sessions and their attempts."""
from attendance_engine import db
from attendance_engine.models.base import BaseModel
from attendance_engine.models.enums import PunchType, SessionState, enum_column
from attendance_engine.models.location import LocationFixMixin
from attendance_engine.utils.helpers import utcnow

class VerificationSession(BaseModel):
    """Bounded sequence of identity-check attempts tied to one clock event."""

    __tablename__ = 'verification_sessions'

    id_prefix = 'vs'
    id = db.Column(db.String(64), primary_key=True)

    user_id = db.Column(db.String(64), nullable=False, index=True)
    attendance_event_id = db.Column(db.String(64), nullable=False, index=True)
    session_type = db.Column(enum_column(PunchType, 'punch_type'), nullable=False)
    state = db.Column(enum_column(SessionState, 'verification_session_state'),
                      nullable=False, default=SessionState.PENDING)
    max_attempts = db.Column(db.Integer, nullable=False)
    zone_id = db.Column(db.Integer, db.ForeignKey('geofence_zones.id'), nullable=True)

    # "<len(user_id)>:<user_id>:<attendance_event_id>" while open, NULL once terminal.
    # The unique constraint keeps one open session per clock event.
    open_key = db.Column(db.String(160), unique=True, nullable=True)

    started_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    result = db.Column(db.JSON, nullable=True)  # final_image_ref, total_attempts, average_confidence

    # Relationships
    zone = db.relationship('GeofenceZone')
    attempts = db.relationship(
        'VerificationAttempt',
        backref='session',
        order_by='VerificationAttempt.attempt_number',
        cascade='all, delete-orphan'
    )

    @staticmethod
    def make_open_key(user_id: str, attendance_event_id: str) -> str:
        # Length prefix keeps ids containing ":" from colliding
        return f"{len(user_id)}:{user_id}:{attendance_event_id}"

    @property
    def is_open(self) -> bool:
        return not self.state.is_terminal

    def to_dict(self, exclude: list = None) -> dict:
        result = super().to_dict(exclude=(exclude or []) + ['open_key'])
        result['attempts'] = [attempt.to_dict() for attempt in self.attempts]
        return result

class VerificationAttempt(LocationFixMixin, BaseModel):
    """One recorded verification outcome. Append-only.

    The location columns hold the device fix at capture time, when known.
    """

    __tablename__ = 'verification_attempts'

    id_prefix = 'va'
    id = db.Column(db.String(64), primary_key=True)

    session_id = db.Column(db.String(64), db.ForeignKey('verification_sessions.id'), nullable=False, index=True)
    attempt_number = db.Column(db.Integer, nullable=False)
    captured_image_ref = db.Column(db.String(512), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    confidence_percent = db.Column(db.Float, nullable=False)
    failure_reason = db.Column(db.String(255), nullable=True)
    captured_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        db.UniqueConstraint('session_id', 'attempt_number', name='uq_verification_attempt_number'),
    )

