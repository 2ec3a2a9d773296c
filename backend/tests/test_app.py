"""Test the application factory, error envelope and CLI commands."""
import json
import threading
import time

import pytest
from attendance_engine import create_app
from attendance_engine.models import ApprovalRequest, GeofenceZone
from attendance_engine.models.enums import ApprovalType
from attendance_engine.services.approval_service import ApprovalWorkflow
from attendance_engine.services.notification_service import NotificationService
from attendance_engine.utils.errors import AlreadyDecided, MaxAttemptsExceeded, VerificationFailed
from attendance_engine.utils.helpers import error_payload
from attendance_engine.utils.locks import LocalKeyedLock, get_keyed_lock

def test_health_check(client):
    """Test health endpoint."""
    response = client.get('/health')
    assert response.status_code == 200
    data = json.loads(response.data)
    assert data['status'] == 'healthy'

def test_unknown_route_uses_error_envelope(client):
    response = client.get('/missing')
    assert response.status_code == 404
    data = json.loads(response.data)
    assert data['error'] is True
    assert data['status_code'] == 404

def test_engine_errors_render_as_envelope(app, client):
    @app.route('/boom')
    def boom():
        raise AlreadyDecided('Request apr_1 was already approved', status='approved')

    response = client.get('/boom')
    assert response.status_code == 409
    data = json.loads(response.data)
    assert data['code'] == 'already_decided'
    assert data['message'] == 'Request apr_1 was already approved'
    assert data['details'] == {'status': 'approved'}

def test_error_payload_defaults_message_to_docstring():
    payload = error_payload(MaxAttemptsExceeded())
    assert payload['status_code'] == 403
    assert 're-registration' in payload['message']

def test_verification_failed_reports_attempts_remaining():
    error = VerificationFailed('Face does not match', attempts_remaining=1)
    assert error.retryable
    assert error.to_dict()['details'] == {'attempts_remaining': 1}

def test_testing_app_uses_local_locks(app):
    assert isinstance(get_keyed_lock(), LocalKeyedLock)

def test_local_lock_serializes_same_key():
    lock = LocalKeyedLock()
    order = []

    def worker(name):
        with lock.hold('approval:apr_1'):
            order.append(f'{name}-in')
            time.sleep(0.05)
            order.append(f'{name}-out')

    threads = [threading.Thread(target=worker, args=(name,)) for name in ('a', 'b')]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert order[0][0] == order[1][0]
    assert order[2][0] == order[3][0]
    assert lock.active_keys() == []

def test_local_lock_allows_disjoint_keys():
    lock = LocalKeyedLock()
    with lock.hold('session:a'):
        with lock.hold('session:b'):
            assert sorted(lock.active_keys()) == ['session:a', 'session:b']

def test_notification_subscriber_errors_are_contained():
    service = NotificationService()
    received = []

    def broken(sender, **payload):
        raise RuntimeError('pager offline')

    service.connect(service.APPROVAL_DECIDED, broken)
    service.connect(service.APPROVAL_DECIDED, lambda sender, **payload: received.append(payload))

    payload = service.emit(service.APPROVAL_DECIDED, 'apr_1', type='late', status='approved')
    assert payload == {'id': 'apr_1', 'type': 'late', 'status': 'approved'}
    assert received == [payload]

def test_unknown_notification_event():
    with pytest.raises(ValueError):
        NotificationService().emit('approval.archived', 'apr_1')

def test_seed_zones_command(app):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['seed-zones'])
    assert 'Seeded 3 zones.' in result.output

    runner.invoke(args=['seed-zones'])
    assert GeofenceZone.query.count() == 3
    assert GeofenceZone.query.filter_by(is_active=True).count() == 2

def test_pending_approvals_command(app):
    ApprovalWorkflow().enqueue(ApprovalRequest(
        user_id='user-1', manager_id='manager-1', type=ApprovalType.EARLY_LEAVE, reason='Dentist'
    ))
    runner = app.test_cli_runner()

    result = runner.invoke(args=['pending-approvals', '--manager', 'manager-1'])
    assert 'early-leave' in result.output
    assert 'Dentist' in result.output

    result = runner.invoke(args=['pending-approvals', '--manager', 'manager-2'])
    assert 'No pending requests.' in result.output

def test_provider_pools_are_sized_from_config():
    app = create_app('testing', VERIFICATION_PROVIDER_WORKERS=2, LOCATION_PROVIDER_WORKERS=1)
    assert app.extensions['verification_provider_pool']._max_workers == 2
    assert app.extensions['location_provider_pool']._max_workers == 1
