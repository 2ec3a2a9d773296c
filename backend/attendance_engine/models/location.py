"""Location fixes and the columns that persist them."""
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, Any, Optional
from attendance_engine import db
from attendance_engine.utils.errors import ValidationError
from attendance_engine.utils.helpers import utcnow
from attendance_engine.utils.validators import Validator

@dataclass(frozen=True)
class LocationFix:
    """A position reported by the location provider. Immutable once captured."""
    latitude: float
    longitude: float
    accuracy_meters: float = 0.0
    captured_at: datetime = None

    def __post_init__(self):
        Validator.validate_coordinates(self.latitude, self.longitude)
        if self.accuracy_meters is None or self.accuracy_meters < 0:
            raise ValidationError("Accuracy must be zero or positive")
        if self.captured_at is None:
            object.__setattr__(self, 'captured_at', utcnow())
        elif self.captured_at.tzinfo is not None:
            # Stored and compared as naive UTC
            object.__setattr__(self, 'captured_at', self.captured_at.astimezone(timezone.utc).replace(tzinfo=None))

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['captured_at'] = self.captured_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LocationFix':
        captured_at = data.get('captured_at')
        if isinstance(captured_at, str):
            if captured_at.endswith('Z'):
                captured_at = captured_at[:-1] + '+00:00'
            captured_at = datetime.fromisoformat(captured_at)
        return cls(
            latitude=data['latitude'],
            longitude=data['longitude'],
            accuracy_meters=data.get('accuracy_meters', 0.0),
            captured_at=captured_at
        )

class LocationFixMixin:
    """Columns storing a single LocationFix on a model."""

    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    accuracy_meters = db.Column(db.Float, nullable=True)
    fix_captured_at = db.Column(db.DateTime, nullable=True)

    @property
    def location_fix(self) -> Optional[LocationFix]:
        if self.latitude is None or self.longitude is None:
            return None
        return LocationFix(
            latitude=self.latitude,
            longitude=self.longitude,
            accuracy_meters=self.accuracy_meters or 0.0,
            captured_at=self.fix_captured_at
        )

    @location_fix.setter
    def location_fix(self, fix: Optional[LocationFix]) -> None:
        if fix is None:
            self.latitude = self.longitude = self.accuracy_meters = self.fix_captured_at = None
            return
        self.latitude = fix.latitude
        self.longitude = fix.longitude
        self.accuracy_meters = fix.accuracy_meters
        self.fix_captured_at = fix.captured_at
