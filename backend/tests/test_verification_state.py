"""Test the verification session transition table."""
from dataclasses import replace

import pytest
from attendance_engine.models.enums import PunchType, SessionState
from attendance_engine.services.verification_state import (
    SessionSnapshot, Start, SampleSubmitted, ProviderResponded, ProviderUnreachable, Cancel,
    transition
)
from attendance_engine.utils.errors import InvalidTransition
from attendance_engine.utils.helpers import utcnow

def new_session(max_attempts=3):
    return SessionSnapshot(
        id='vs_test',
        user_id='user-1',
        attendance_event_id='evt-1',
        session_type=PunchType.CLOCK_IN,
        max_attempts=max_attempts,
        started_at=utcnow()
    )

def capturing(max_attempts=3):
    return transition(new_session(max_attempts), Start())

def attempt(session, success, confidence):
    verifying = transition(session, SampleSubmitted(image_ref=f'img-{session.attempt_count + 1}'))
    return transition(verifying, ProviderResponded(success=success, confidence_percent=confidence))

def test_start_moves_to_capturing():
    assert capturing().state == SessionState.CAPTURING

def test_sample_moves_to_verifying():
    session = transition(capturing(), SampleSubmitted(image_ref='img-1'))
    assert session.state == SessionState.VERIFYING
    assert session.pending_image_ref == 'img-1'
    assert session.attempt_count == 0

def test_success_completes_session():
    session = attempt(capturing(), True, 91.0)
    assert session.state == SessionState.COMPLETED
    assert session.completed_at is not None
    assert session.result.success
    assert session.result.average_confidence == 91.0
    assert session.result.final_image_ref == 'img-1'

def test_failure_with_attempts_left_returns_to_capturing():
    session = attempt(capturing(), False, 30.0)
    assert session.state == SessionState.CAPTURING
    assert session.attempts_remaining == 2
    assert session.last_attempt.failure_reason

def test_three_failures_end_session_as_failed():
    session = capturing()
    for confidence in (30.0, 40.0, 50.0):
        session = attempt(session, False, confidence)

    assert session.state == SessionState.FAILED
    assert session.attempt_count == 3
    assert session.result.requires_reregistration
    assert session.result.average_confidence == pytest.approx(40.0)
    assert [a.attempt_number for a in session.attempts] == [1, 2, 3]

def test_success_after_failure_averages_successful_attempts():
    session = attempt(capturing(), False, 20.0)
    session = attempt(session, True, 90.0)
    assert session.state == SessionState.COMPLETED
    assert session.result.total_attempts == 2
    assert session.result.average_confidence == 90.0

def test_unreachable_provider_does_not_consume_attempt():
    verifying = transition(capturing(), SampleSubmitted(image_ref='img-1'))
    session = transition(verifying, ProviderUnreachable(reason='offline'))
    assert session.state == SessionState.CAPTURING
    assert session.attempt_count == 0
    assert session.pending_image_ref is None

@pytest.mark.parametrize('state', [SessionState.PENDING, SessionState.CAPTURING, SessionState.VERIFYING])
def test_cancel_from_open_states(state):
    session = transition(replace(new_session(), state=state), Cancel())
    assert session.state == SessionState.CANCELLED
    assert session.cancelled_at is not None

@pytest.mark.parametrize('state', [SessionState.COMPLETED, SessionState.FAILED, SessionState.CANCELLED])
def test_terminal_states_accept_no_events(state):
    session = replace(new_session(), state=state)
    for event in (Start(), SampleSubmitted(image_ref='img'), Cancel(),
                  ProviderResponded(success=True, confidence_percent=99.0)):
        with pytest.raises(InvalidTransition):
            transition(session, event)

def test_sample_requires_capturing_state():
    with pytest.raises(InvalidTransition):
        transition(new_session(), SampleSubmitted(image_ref='img-1'))

def test_provider_response_requires_verifying_state():
    with pytest.raises(InvalidTransition):
        transition(capturing(), ProviderResponded(success=True, confidence_percent=99.0))

def test_empty_sample_is_rejected():
    with pytest.raises(InvalidTransition):
        transition(capturing(), SampleSubmitted(image_ref=''))

def test_transitions_do_not_mutate_input():
    session = capturing()
    attempt(session, False, 10.0)
    assert session.state == SessionState.CAPTURING
    assert session.attempt_count == 0
