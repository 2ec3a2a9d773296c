"""Work zone registry model."""
from typing import Set
from attendance_engine import db
from attendance_engine.models.base import BaseModel
from attendance_engine.utils.validators import Validator

class GeofenceZone(BaseModel):
    """Circular work zone (center + radius) in which punches count as on-premises.

    The registry is written by the administrative surface; the engine only
    reads it. Insertion order (``id`` order) breaks distance ties.
    """

    __tablename__ = 'geofence_zones'

    name = db.Column(db.String(100), nullable=False)
    center_lat = db.Column(db.Float, nullable=False)
    center_lng = db.Column(db.Float, nullable=False)
    radius_meters = db.Column(db.Float, nullable=False)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    allowed_methods = db.Column(db.JSON, nullable=False, default=list)  # geolocation, qr, facial

    __table_args__ = (
        db.CheckConstraint('radius_meters > 0', name='ck_geofence_zones_radius_positive'),
    )

    def __init__(self, **kwargs):
        kwargs.setdefault('is_active', True)
        kwargs.setdefault('allowed_methods', [])
        Validator.validate_coordinates(kwargs.get('center_lat'), kwargs.get('center_lng'))
        Validator.validate_radius(kwargs.get('radius_meters'))
        super().__init__(**kwargs)

    @property
    def allowed_method_set(self) -> Set[str]:
        return set(self.allowed_methods or [])

    def allows(self, method: str) -> bool:
        """Check if a verification method is allowed in this zone."""
        return method in self.allowed_method_set

    def to_dict(self, exclude: list = None) -> dict:
        result = super().to_dict(exclude=exclude)
        result['allowed_methods'] = sorted(self.allowed_method_set)
        return result

    def __repr__(self) -> str:
        return f'<GeofenceZone {self.name}>'
