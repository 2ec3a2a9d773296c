"""Notification events for downstream alerting.

Events are blinker signals, the same mechanism Flask uses for its own
signals. Payload is the entity id plus its type/status::

    from attendance_engine.services.notification_service import notifications

    def on_requested(sender, **payload):
        push_to_manager(payload['id'], payload['type'])

    notifications.connect(notifications.APPROVAL_REQUESTED, on_requested)
"""
import logging
from typing import Callable, Dict, Optional

from blinker import Namespace

logger = logging.getLogger(__name__)

class NotificationService:
    """Emits engine events through named blinker signals."""

    APPROVAL_REQUESTED = 'approval.requested'
    APPROVAL_DECIDED = 'approval.decided'
    VERIFICATION_FAILED = 'verification.failed'

    EVENTS = (APPROVAL_REQUESTED, APPROVAL_DECIDED, VERIFICATION_FAILED)

    def __init__(self):
        self._namespace = Namespace()
        self._signals = {name: self._namespace.signal(name) for name in self.EVENTS}

    def signal(self, event: str):
        try:
            return self._signals[event]
        except KeyError:
            raise ValueError(f"Unknown notification event: {event}")

    def connect(self, event: str, receiver: Callable, weak: bool = False) -> Callable:
        """Subscribe ``receiver(sender, **payload)`` to an event."""
        return self.signal(event).connect(receiver, weak=weak)

    def disconnect(self, event: str, receiver: Callable) -> None:
        self.signal(event).disconnect(receiver)

    def emit(self, event: str, entity_id: str, type: Optional[str] = None,
             status: Optional[str] = None, sender=None) -> Dict:
        """Send an event to its subscribers and return the payload sent.

        Emission happens after the state change is committed, so a failing
        subscriber is logged and does not undo or fail the operation.
        """
        payload = {'id': entity_id, 'type': type, 'status': status}
        logger.info("Event %s id=%s type=%s status=%s", event, entity_id, type, status)

        for receiver in self.signal(event).receivers_for(sender):
            try:
                receiver(sender, **payload)
            except Exception:
                logger.exception("Subscriber %r failed for %s id=%s", receiver, event, entity_id)

        return payload

# Shared instance used by the engine services
notifications = NotificationService()
