"""Test punch orchestration from location fix to acceptance."""
import math
import time
from datetime import datetime, timezone

import pytest
from attendance_engine.models import GeofenceZone, LocationFix, TemporaryWorkplaceRecord, VerificationSession
from attendance_engine.models.enums import PunchType
from attendance_engine.services.geofence_service import GeofenceService
from attendance_engine.services.punch_service import LocationProvider, PunchService, TemporaryPunchDetails
from attendance_engine.utils.errors import (
    LocationProviderUnavailable, LocationTimeout, LocationUnavailable, PermissionDenied,
    TemporaryWorkplaceDisabled, VerificationFailed, ZoneMismatch
)
from tests.conftest import ScriptedProvider, passing, failing, OFFICE_LAT, OFFICE_LNG

class FixedLocation(LocationProvider):
    def __init__(self, fix=None, error=None, delay=0):
        self.fix = fix
        self.error = error
        self.delay = delay

    def current_fix(self, timeout):
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.fix

def north_of_office(meters):
    return LocationFix(OFFICE_LAT + math.degrees(meters / 6371000.0), OFFICE_LNG, accuracy_meters=10)

def test_in_zone_punch_opens_verification(app, office):
    service = PunchService(ScriptedProvider(passing()))
    result = service.begin_punch('user-1', 'evt-1', 'clock-in', fix=north_of_office(40))

    assert not result.accepted
    assert result.zone_id == office.id
    assert result.distance_meters == pytest.approx(40, abs=0.5)
    session = VerificationSession.get_by_id(result.session_id)
    assert session.zone_id == office.id

    completed = service.complete_verification(result.session_id, 'img-1')
    assert completed.accepted
    assert completed.punch_type == PunchType.CLOCK_IN
    assert completed.zone_id == office.id

def test_device_fix_with_utc_offset_opens_verification(app, office):
    app.config['LOCATION_MAX_AGE_SECONDS'] = 30
    fix = LocationFix.from_dict({
        'latitude': OFFICE_LAT,
        'longitude': OFFICE_LNG,
        'accuracy_meters': 5,
        'captured_at': datetime.now(timezone.utc).isoformat()
    })

    result = PunchService(ScriptedProvider()).begin_punch('user-1', 'evt-1', 'clock-in', fix=fix)
    assert result.session_id is not None
    assert result.zone_id == office.id

def test_failed_verification_propagates(app, office):
    service = PunchService(ScriptedProvider(failing()))
    result = service.begin_punch('user-1', 'evt-1', 'clock-out', fix=north_of_office(0))

    with pytest.raises(VerificationFailed):
        service.complete_verification(result.session_id, 'img-1')

def test_location_token_is_issued_on_request(app, office):
    service = PunchService(ScriptedProvider())
    result = service.begin_punch('user-1', 'evt-1', 'clock-in', fix=north_of_office(0),
                                 issue_location_token=True)

    claims = GeofenceService.verify_location_token(result.location_token)
    assert claims['zone_id'] == office.id

def test_out_of_zone_punch_is_a_zone_mismatch(app, office):
    service = PunchService(ScriptedProvider())

    with pytest.raises(ZoneMismatch) as exc_info:
        service.begin_punch('user-1', 'evt-1', 'clock-in', fix=north_of_office(200))

    assert exc_info.value.match.zone.id == office.id
    assert not exc_info.value.match.within_zone
    assert exc_info.value.details['distance_meters'] == pytest.approx(200, abs=1)
    assert VerificationSession.query.count() == 0

def test_empty_registry_is_a_zone_mismatch(app):
    service = PunchService(ScriptedProvider())
    with pytest.raises(ZoneMismatch) as exc_info:
        service.begin_punch('user-1', 'evt-1', 'clock-in', fix=north_of_office(0))
    assert exc_info.value.match.zone is None

def test_out_of_zone_punch_with_temporary_details(app, office):
    service = PunchService(ScriptedProvider())
    result = service.begin_punch(
        'user-1', 'evt-1', 'clock-in', fix=north_of_office(800),
        temporary=TemporaryPunchDetails(reason='Site inspection', manager_id='manager-1')
    )

    assert not result.accepted
    assert result.pending_approval_id is not None
    record = TemporaryWorkplaceRecord.get_by_id(result.record_id)
    assert record.approval_request_id == result.pending_approval_id

def test_self_approved_temporary_punch_is_accepted(app, office):
    app.config['EXCEPTIONAL_ATTENDANCE_AUTO_APPROVE'] = True
    service = PunchService(ScriptedProvider())
    result = service.begin_punch(
        'user-1', 'evt-1', 'clock-in', fix=north_of_office(800),
        temporary=TemporaryPunchDetails(reason='Site inspection')
    )
    assert result.accepted
    assert result.pending_approval_id is None

def test_temporary_workplace_too_far_away(app, office):
    service = PunchService(ScriptedProvider())
    with pytest.raises(TemporaryWorkplaceDisabled):
        service.begin_punch(
            'user-1', 'evt-1', 'clock-in', fix=north_of_office(6000),
            temporary=TemporaryPunchDetails(reason='Conference', manager_id='manager-1')
        )
    assert TemporaryWorkplaceRecord.query.count() == 0

def test_fix_from_location_provider(app, office):
    service = PunchService(ScriptedProvider(), location_provider=FixedLocation(north_of_office(10)))
    result = service.begin_punch('user-1', 'evt-1', 'clock-in')
    assert result.session_id is not None

@pytest.mark.parametrize('error, expected', [
    (PermissionDenied('User denied geolocation'), PermissionDenied),
    (LocationProviderUnavailable(), LocationProviderUnavailable),
    (ConnectionError('gps daemon down'), LocationProviderUnavailable),
])
def test_location_provider_errors(app, office, error, expected):
    service = PunchService(ScriptedProvider(), location_provider=FixedLocation(error=error))
    with pytest.raises(expected) as exc_info:
        service.begin_punch('user-1', 'evt-1', 'clock-in')
    assert isinstance(exc_info.value, LocationUnavailable)
    assert VerificationSession.query.count() == 0

def test_location_provider_timeout(app, office):
    app.config['LOCATION_PROVIDER_TIMEOUT'] = 0.05
    service = PunchService(ScriptedProvider(), location_provider=FixedLocation(north_of_office(0), delay=0.5))
    with pytest.raises(LocationTimeout):
        service.begin_punch('user-1', 'evt-1', 'clock-in')

def test_inaccurate_fix_is_unavailable(app, office):
    service = PunchService(ScriptedProvider())
    fix = LocationFix(OFFICE_LAT, OFFICE_LNG, accuracy_meters=500)
    with pytest.raises(LocationUnavailable):
        service.begin_punch('user-1', 'evt-1', 'clock-in', fix=fix)

def test_no_fix_and_no_provider(app, office):
    with pytest.raises(LocationUnavailable):
        PunchService(ScriptedProvider()).begin_punch('user-1', 'evt-1', 'clock-in')

def test_inactive_zone_does_not_accept_punches(app):
    GeofenceZone(name='Closed Site', center_lat=OFFICE_LAT, center_lng=OFFICE_LNG,
                 radius_meters=100, is_active=False).save()
    with pytest.raises(ZoneMismatch):
        PunchService(ScriptedProvider()).begin_punch('user-1', 'evt-1', 'clock-in', fix=north_of_office(0))
