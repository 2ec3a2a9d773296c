"""Geofence matching and location verification service."""
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

import jwt
from flask import current_app

from attendance_engine.models.geofence_zone import GeofenceZone
from attendance_engine.models.location import LocationFix
from attendance_engine.utils.errors import LocationUnavailable
from attendance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6371000.0

@dataclass(frozen=True)
class ZoneMatch:
    """Nearest active zone for a fix and whether the fix lies inside it."""
    zone: Optional[GeofenceZone]
    distance_meters: float
    within_zone: bool

    def to_dict(self) -> Dict:
        return {
            'zone_id': self.zone.id if self.zone is not None else None,
            'zone_name': self.zone.name if self.zone is not None else None,
            'distance_meters': self.distance_meters if math.isfinite(self.distance_meters) else None,
            'within_zone': self.within_zone
        }

class GeofenceService:
    """Service for geofence matching and location verification."""

    TOKEN_ALGORITHM = 'HS256'

    @staticmethod
    def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
        """Great-circle distance between two points in meters (haversine)."""
        lat1_rad = math.radians(lat1)
        lat2_rad = math.radians(lat2)
        delta_lat = math.radians(lat2 - lat1)
        delta_lon = math.radians(lon2 - lon1)

        a = (math.sin(delta_lat / 2) ** 2 +
             math.cos(lat1_rad) * math.cos(lat2_rad) *
             math.sin(delta_lon / 2) ** 2)
        # Rounding can push a slightly past 1 for antipodal points
        a = min(1.0, a)
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

        return EARTH_RADIUS_METERS * c

    @staticmethod
    def match_zone(fix: LocationFix, zones: Iterable[GeofenceZone]) -> ZoneMatch:
        """Find the nearest active zone and classify the fix against its radius.

        Ties keep the zone seen first, so callers control tie-breaking through
        the order of ``zones``. The radius boundary is inclusive.
        """
        closest_zone = None
        min_distance = math.inf

        for zone in zones:
            if not zone.is_active:
                continue

            distance = GeofenceService.calculate_distance(
                fix.latitude, fix.longitude,
                zone.center_lat, zone.center_lng
            )

            if distance < min_distance:
                min_distance = distance
                closest_zone = zone

        if closest_zone is None:
            return ZoneMatch(zone=None, distance_meters=math.inf, within_zone=False)

        return ZoneMatch(
            zone=closest_zone,
            distance_meters=min_distance,
            within_zone=min_distance <= closest_zone.radius_meters
        )

    @staticmethod
    def load_active_zones() -> List[GeofenceZone]:
        """Read active zones from the registry in insertion order."""
        return GeofenceZone.query.filter_by(is_active=True).order_by(GeofenceZone.id).all()

    @staticmethod
    def check_fix(
        fix: LocationFix,
        now: datetime = None,
        max_accuracy_meters: Optional[float] = None,
        max_age_seconds: Optional[float] = None
    ) -> LocationFix:
        """Reject fixes that are too imprecise or too old to decide a punch."""
        if max_accuracy_meters is not None and fix.accuracy_meters > max_accuracy_meters:
            raise LocationUnavailable(
                f"Location accuracy too low: {GeofenceService.format_distance(fix.accuracy_meters)} "
                f"(maximum {GeofenceService.format_distance(max_accuracy_meters)})",
                accuracy_meters=fix.accuracy_meters
            )

        if max_age_seconds is not None:
            now = now or utcnow()
            age = (now - fix.captured_at).total_seconds()
            if age > max_age_seconds:
                raise LocationUnavailable(
                    f"Location fix is {int(age)}s old (maximum {int(max_age_seconds)}s)",
                    age_seconds=age
                )

        return fix

    @staticmethod
    def format_distance(meters: float) -> str:
        """Human readable distance: '85m' below one kilometer, '1.2km' above."""
        if not math.isfinite(meters):
            return 'n/a'
        if meters < 1000:
            return f"{round(meters)}m"
        return f"{meters / 1000:.1f}km"

    @staticmethod
    def create_location_token(user_id: str, attendance_event_id: str, zone_id: int) -> str:
        """Create a short-lived token proving an in-zone match."""
        now = utcnow()
        payload = {
            'user_id': user_id,
            'attendance_event_id': attendance_event_id,
            'zone_id': zone_id,
            'timestamp': now.isoformat(),
            'exp': now + timedelta(seconds=current_app.config['LOCATION_TOKEN_EXPIRY']),
            'nonce': secrets.token_hex(8)
        }

        return jwt.encode(
            payload,
            current_app.config['LOCATION_TOKEN_SECRET'],
            algorithm=GeofenceService.TOKEN_ALGORITHM
        )

    @staticmethod
    def verify_location_token(token: str) -> Dict:
        """Decode a location token, raising LocationUnavailable when invalid or expired."""
        try:
            return jwt.decode(
                token,
                current_app.config['LOCATION_TOKEN_SECRET'],
                algorithms=[GeofenceService.TOKEN_ALGORITHM]
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired location token")
            raise LocationUnavailable("Location verification expired. Please verify location again")
        except jwt.InvalidTokenError:
            logger.warning("Rejected invalid location token")
            raise LocationUnavailable("Invalid location verification token")
