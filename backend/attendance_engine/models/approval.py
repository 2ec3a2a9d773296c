"""Manager approval requests."""
from attendance_engine import db
from attendance_engine.models.base import BaseModel
from attendance_engine.models.enums import ApprovalType, ApprovalStatus, enum_column
from attendance_engine.utils.helpers import utcnow

class ApprovalRequest(BaseModel):
    """Decision item raised by an attendance exception.

    Terminal once ``status`` leaves ``pending``; never edited afterwards.
    """

    __tablename__ = 'approval_requests'

    id_prefix = 'apr'
    id = db.Column(db.String(64), primary_key=True)

    source_event_id = db.Column(db.String(64), nullable=True, index=True)
    user_id = db.Column(db.String(64), nullable=False, index=True)
    manager_id = db.Column(db.String(64), nullable=False, index=True)
    type = db.Column(enum_column(ApprovalType, 'approval_type'), nullable=False, index=True)
    reason = db.Column(db.Text, nullable=False, default='')
    status = db.Column(enum_column(ApprovalStatus, 'approval_status'),
                       nullable=False, default=ApprovalStatus.PENDING, index=True)
    requested_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    decided_at = db.Column(db.DateTime, nullable=True)
    decided_by = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def __init__(self, **kwargs):
        kwargs.setdefault('status', ApprovalStatus.PENDING)
        kwargs.setdefault('requested_at', utcnow())
        super().__init__(**kwargs)

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING

    def __repr__(self) -> str:
        return f'<ApprovalRequest {self.id} {self.type.value} {self.status.value}>'
