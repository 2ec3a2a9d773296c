"""Temporary workplace punches and saved reusable locations."""
from attendance_engine import db
from attendance_engine.models.base import BaseModel
from attendance_engine.models.enums import PunchType, enum_column
from attendance_engine.models.location import LocationFixMixin

class ReusableWorkplace(LocationFixMixin, BaseModel):
    """A named temporary location a user can select again."""

    __tablename__ = 'reusable_workplaces'

    user_id = db.Column(db.String(64), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    usage_count = db.Column(db.Integer, default=0, nullable=False)
    last_used_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        db.UniqueConstraint('user_id', 'name', name='uq_reusable_workplace_user_name'),
    )

    def to_dict(self, exclude: list = None) -> dict:
        result = super().to_dict(exclude=exclude)
        fix = self.location_fix
        result['location_fix'] = fix.to_dict() if fix else None
        return result

    def __repr__(self) -> str:
        return f'<ReusableWorkplace {self.user_id}:{self.name}>'

class TemporaryWorkplaceRecord(LocationFixMixin, BaseModel):
    """Punch from a location outside every registered zone."""

    __tablename__ = 'temporary_workplace_records'

    SELF_APPROVED = 'self-approved'

    user_id = db.Column(db.String(64), nullable=False, index=True)
    date = db.Column(db.Date, nullable=False, index=True)
    type = db.Column(enum_column(PunchType, 'punch_type'), nullable=False)
    time = db.Column(db.Time, nullable=False)
    reason = db.Column(db.Text, nullable=True)
    photo_ref = db.Column(db.String(512), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    is_reusable = db.Column(db.Boolean, default=False, nullable=False)
    reusable_location_id = db.Column(db.Integer, db.ForeignKey('reusable_workplaces.id'), nullable=True)

    # Approval: 'self-approved', or the linked request's status
    approval_request_id = db.Column(db.String(64), db.ForeignKey('approval_requests.id'), nullable=True)
    approval_status = db.Column(db.String(20), nullable=False, default=SELF_APPROVED)

    # Relationships
    reusable_location = db.relationship('ReusableWorkplace', backref='records')
    approval_request = db.relationship('ApprovalRequest')

    @property
    def is_self_approved(self) -> bool:
        return self.approval_status == self.SELF_APPROVED

    def to_dict(self, exclude: list = None) -> dict:
        result = super().to_dict(exclude=exclude)
        result['date'] = self.date.isoformat() if self.date else None
        result['time'] = self.time.strftime('%H:%M') if self.time else None
        fix = self.location_fix
        result['location_fix'] = fix.to_dict() if fix else None
        return result
