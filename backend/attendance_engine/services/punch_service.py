"""Clock-in/clock-out orchestration.

Ties the engine together for one clock event: obtain a location fix, match
it against the zone registry, then either open an identity verification
session (in zone) or record a temporary workplace punch (out of zone).
"""
import logging
import math
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Any, Dict, Optional

from flask import current_app

from attendance_engine.models.enums import PunchType
from attendance_engine.models.location import LocationFix
from attendance_engine.services.geofence_service import GeofenceService, ZoneMatch
from attendance_engine.services.temporary_workplace_service import TemporaryWorkplaceHandler
from attendance_engine.services.verification_service import (
    VerificationProvider, VerificationSessionController
)
from attendance_engine.utils.errors import (
    LocationProviderUnavailable, LocationTimeout, LocationUnavailable,
    TemporaryWorkplaceDisabled, ZoneMismatch
)

logger = logging.getLogger(__name__)

POOL_EXTENSION = 'location_provider_pool'

def init_location_pool(app) -> None:
    """Attach the thread pool location requests run on (``LOCATION_PROVIDER_WORKERS``)."""
    app.extensions[POOL_EXTENSION] = ThreadPoolExecutor(
        max_workers=app.config['LOCATION_PROVIDER_WORKERS'],
        thread_name_prefix='location-provider'
    )

class LocationProvider:
    """Device positioning capability.

    ``current_fix`` raises ``PermissionDenied``,
    ``LocationProviderUnavailable`` or ``LocationTimeout`` when no fix can
    be produced.
    """

    def current_fix(self, timeout: float) -> LocationFix:
        raise NotImplementedError

@dataclass
class TemporaryPunchDetails:
    """What the user entered on the temporary workplace form."""
    reason: Optional[str]
    photo_ref: Optional[str] = None
    save_as_reusable: bool = False
    reusable_name: Optional[str] = None
    reusable_location_id: Optional[int] = None
    notes: Optional[str] = None
    manager_id: Optional[str] = None

@dataclass
class PunchResult:
    """Outcome handed to the attendance ledger writer."""
    accepted: bool
    punch_type: PunchType
    session_id: Optional[str] = None
    record_id: Optional[int] = None
    pending_approval_id: Optional[str] = None
    zone_id: Optional[int] = None
    distance_meters: Optional[float] = None
    location_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'accepted': self.accepted,
            'punch_type': self.punch_type.value,
            'session_id': self.session_id,
            'record_id': self.record_id,
            'pending_approval_id': self.pending_approval_id,
            'zone_id': self.zone_id,
            'distance_meters': self.distance_meters,
            'location_token': self.location_token
        }

class PunchService:
    """Service for clock-in and clock-out punches."""

    def __init__(
        self,
        verification_provider: Optional[VerificationProvider] = None,
        location_provider: Optional[LocationProvider] = None,
        controller: Optional[VerificationSessionController] = None,
        temporary_handler: Optional[TemporaryWorkplaceHandler] = None
    ):
        if controller is None:
            if verification_provider is None:
                raise ValueError("A verification provider or controller is required")
            controller = VerificationSessionController(verification_provider)
        self.controller = controller
        self.location_provider = location_provider
        self.temporary_handler = temporary_handler or TemporaryWorkplaceHandler()

    def begin_punch(
        self,
        user_id: str,
        attendance_event_id: str,
        punch_type,
        fix: Optional[LocationFix] = None,
        location_provider: Optional[LocationProvider] = None,
        temporary: Optional[TemporaryPunchDetails] = None,
        issue_location_token: bool = False
    ) -> PunchResult:
        """Start a punch from a location fix.

        In zone, a verification session is opened and the punch is accepted
        once ``complete_verification`` succeeds. Out of zone, ``ZoneMismatch``
        is raised unless ``temporary`` details are given, in which case the
        punch is recorded as a temporary workplace punch.
        """
        punch_type = PunchType(punch_type)
        config = current_app.config

        if fix is None:
            fix = self._obtain_fix(location_provider or self.location_provider)
        GeofenceService.check_fix(
            fix,
            max_accuracy_meters=config.get('LOCATION_MAX_ACCURACY_METERS'),
            max_age_seconds=config.get('LOCATION_MAX_AGE_SECONDS')
        )

        match = GeofenceService.match_zone(fix, GeofenceService.load_active_zones())
        distance = match.distance_meters if math.isfinite(match.distance_meters) else None

        if match.within_zone:
            session = self.controller.open_session(
                user_id, attendance_event_id, punch_type, zone_id=match.zone.id
            )
            token = None
            if issue_location_token:
                token = GeofenceService.create_location_token(user_id, attendance_event_id, match.zone.id)

            logger.info(
                "Punch %s for user %s in zone %s (%s); verification session %s",
                punch_type.value, user_id, match.zone.name,
                GeofenceService.format_distance(match.distance_meters), session.id
            )
            return PunchResult(
                accepted=False,
                punch_type=punch_type,
                session_id=session.id,
                zone_id=match.zone.id,
                distance_meters=distance,
                location_token=token
            )

        if temporary is None:
            logger.info(
                "Punch %s for user %s rejected: %s from nearest zone",
                punch_type.value, user_id, GeofenceService.format_distance(match.distance_meters)
            )
            raise ZoneMismatch(
                self._mismatch_message(match),
                match=match,
                **match.to_dict()
            )

        self._check_temporary_distance(match)

        record = self.temporary_handler.submit_punch(
            user_id,
            punch_type,
            fix,
            temporary.reason,
            photo_ref=temporary.photo_ref,
            save_as_reusable=temporary.save_as_reusable,
            reusable_name=temporary.reusable_name,
            reusable_location_id=temporary.reusable_location_id,
            notes=temporary.notes,
            manager_id=temporary.manager_id,
            source_event_id=attendance_event_id
        )
        return PunchResult(
            accepted=record.is_self_approved,
            punch_type=punch_type,
            record_id=record.id,
            pending_approval_id=record.approval_request_id,
            zone_id=match.zone.id if match.zone is not None else None,
            distance_meters=distance
        )

    def complete_verification(
        self,
        session_id: str,
        image_ref: str,
        location_fix: Optional[LocationFix] = None,
        timeout: Optional[float] = None
    ) -> PunchResult:
        """Submit a sample for an in-zone punch; accepted once verified.

        Verification errors propagate from the controller unchanged.
        """
        outcome = self.controller.submit_sample(session_id, image_ref, location_fix=location_fix, timeout=timeout)
        session = outcome.session
        logger.info("Punch %s accepted for user %s", session.session_type.value, session.user_id)
        return PunchResult(
            accepted=True,
            punch_type=session.session_type,
            session_id=session.id,
            zone_id=session.zone_id
        )

    # =================== HELPERS ===================

    @staticmethod
    def _obtain_fix(provider: Optional[LocationProvider]) -> LocationFix:
        if provider is None:
            raise LocationProviderUnavailable("No location fix and no location provider")

        timeout = current_app.config['LOCATION_PROVIDER_TIMEOUT']
        future = current_app.extensions[POOL_EXTENSION].submit(provider.current_fix, timeout)
        try:
            fix = future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            raise LocationTimeout(f"Location request timed out after {timeout:g}s")
        except LocationUnavailable:
            raise
        except TimeoutError as e:
            raise LocationTimeout(f"Location request timed out: {e}")
        except (ConnectionError, OSError) as e:
            raise LocationProviderUnavailable(f"Location provider unavailable: {e}")

        if fix is None:
            raise LocationProviderUnavailable("Location provider returned no fix")
        return fix

    @staticmethod
    def _check_temporary_distance(match: ZoneMatch) -> None:
        max_distance = current_app.config.get('TEMPORARY_WORKPLACE_MAX_DISTANCE_METERS')
        # An empty registry has no workplace to measure from
        if max_distance is None or match.zone is None:
            return
        if match.distance_meters > max_distance:
            raise TemporaryWorkplaceDisabled(
                f"Temporary workplace is {GeofenceService.format_distance(match.distance_meters)} "
                f"from {match.zone.name} (maximum {GeofenceService.format_distance(max_distance)})",
                distance_meters=match.distance_meters
            )

    @staticmethod
    def _mismatch_message(match: ZoneMatch) -> str:
        if match.zone is None:
            return "No active work zone is registered"
        return (
            f"You are {GeofenceService.format_distance(match.distance_meters)} from "
            f"{match.zone.name}, outside its {GeofenceService.format_distance(match.zone.radius_meters)} radius"
        )
