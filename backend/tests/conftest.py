"""Shared fixtures for engine tests."""
import threading

import pytest
from attendance_engine import create_app, db
from attendance_engine.models import GeofenceZone
from attendance_engine.services.notification_service import notifications
from attendance_engine.services.verification_service import ProviderResult, VerificationProvider
from attendance_engine.utils.errors import ProviderUnavailable

# Main office used throughout the scenarios: San Francisco, 100 m radius
OFFICE_LAT = 37.7749
OFFICE_LNG = -122.4194

class ScriptedProvider(VerificationProvider):
    """Answers from a fixed script; each item is a ProviderResult, a mapping or an exception."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def verify(self, sample_ref):
        self.calls.append(sample_ref)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        return answer

def passing(confidence=92.0):
    return ProviderResult(success=True, confidence_percent=confidence)

def failing(confidence=40.0, reason='Face does not match'):
    return ProviderResult(success=False, confidence_percent=confidence, failure_reason=reason)

def unreachable():
    return ProviderUnavailable('Verification backend offline')

@pytest.fixture
def app():
    """Create test app."""
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()

@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()

@pytest.fixture
def office(app):
    """Active 100 m zone around the main office."""
    zone = GeofenceZone(
        name='Main Office',
        center_lat=OFFICE_LAT,
        center_lng=OFFICE_LNG,
        radius_meters=100,
        allowed_methods=['geolocation', 'facial']
    )
    return zone.save()

@pytest.fixture
def events():
    """Record every notification emitted during the test."""
    received = []

    def receiver_for(name):
        def receiver(sender, **payload):
            received.append((name, payload))
        return receiver

    receivers = {name: receiver_for(name) for name in notifications.EVENTS}
    for name, receiver in receivers.items():
        notifications.connect(name, receiver)
    yield received
    for name, receiver in receivers.items():
        notifications.disconnect(name, receiver)

@pytest.fixture
def threaded_app(tmp_path):
    """App on a file database so each thread gets its own connection."""
    app = create_app('testing', SQLALCHEMY_DATABASE_URI=f"sqlite:///{tmp_path / 'engine.db'}")
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()

def run_concurrently(app, target, count=6):
    """Run ``target(index)`` in ``count`` threads at once; return results or raised errors."""
    barrier = threading.Barrier(count)
    outcomes = [None] * count

    def worker(index):
        with app.app_context():
            barrier.wait()
            try:
                outcomes[index] = target(index)
            except Exception as e:
                outcomes[index] = e

    threads = [threading.Thread(target=worker, args=(index,)) for index in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return outcomes
