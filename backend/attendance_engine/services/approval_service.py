"""Manager approval workflow for attendance exceptions."""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from attendance_engine import db
from attendance_engine.models.approval import ApprovalRequest
from attendance_engine.models.enums import ApprovalStatus, ApprovalType
from attendance_engine.models.temporary_workplace import TemporaryWorkplaceRecord
from attendance_engine.services.notification_service import notifications as default_notifications
from attendance_engine.utils.errors import AlreadyDecided, AttendanceError, NotFound, ValidationError
from attendance_engine.utils.helpers import utcnow, generate_id
from attendance_engine.utils.locks import get_keyed_lock

logger = logging.getLogger(__name__)

@dataclass
class BulkDecision:
    """Per-item result of a bulk decision. Partial success is normal."""
    succeeded: List[str] = field(default_factory=list)
    failed: List[Tuple[str, AttendanceError]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'succeeded': list(self.succeeded),
            'failed': [{'id': request_id, **error.to_dict()} for request_id, error in self.failed]
        }

class ApprovalWorkflow:
    """Queue of exception requests awaiting a manager decision."""

    def __init__(self, notifier=None):
        self.notifier = notifier or default_notifications

    # =================== WRITES ===================

    def enqueue(self, request: ApprovalRequest, commit: bool = True) -> ApprovalRequest:
        """Add a pending request. Re-enqueuing an existing id is a no-op."""
        if request.id is None:
            request.id = generate_id('apr')

        existing = db.session.get(ApprovalRequest, request.id)
        if existing is not None:
            logger.info("Approval request %s already queued; ignoring duplicate", request.id)
            return existing

        if not request.user_id or not request.manager_id:
            raise ValidationError("Approval requests need a requester and a manager")

        request.type = self._approval_type(request.type)
        request.status = ApprovalStatus.PENDING
        request.decided_at = None
        db.session.add(request)

        if commit:
            db.session.commit()
            self.notify_requested(request)
        return request

    def decide(
        self,
        request_id: str,
        approve: bool,
        decided_by: Optional[str] = None,
        notes: Optional[str] = None
    ) -> ApprovalRequest:
        """Approve or reject a pending request. Each request is decided once."""
        with get_keyed_lock().hold(f"approval:{request_id}"):
            request = db.session.get(ApprovalRequest, request_id)
            if request is None:
                raise NotFound(f"Approval request {request_id} not found")

            db.session.refresh(request)
            if not request.is_pending:
                raise AlreadyDecided(
                    f"Approval request {request_id} was already {request.status.value}",
                    status=request.status.value
                )

            status = ApprovalStatus.APPROVED if approve else ApprovalStatus.REJECTED
            now = utcnow()

            # Conditional update: only one decider can move the row out of pending
            updated = ApprovalRequest.query.filter_by(
                id=request_id, status=ApprovalStatus.PENDING
            ).update(
                {'status': status, 'decided_at': now, 'decided_by': decided_by,
                 'notes': notes, 'updated_at': now},
                synchronize_session=False
            )
            if updated != 1:
                db.session.rollback()
                raise AlreadyDecided(f"Approval request {request_id} was already decided")

            TemporaryWorkplaceRecord.query.filter_by(approval_request_id=request_id).update(
                {'approval_status': status.value, 'updated_at': now},
                synchronize_session=False
            )
            db.session.commit()
            db.session.refresh(request)

        logger.info("Approval request %s %s by %s", request_id, status.value, decided_by or 'unknown')
        self.notifier.emit(
            self.notifier.APPROVAL_DECIDED, request.id,
            type=request.type.value, status=request.status.value, sender=self
        )
        return request

    def bulk_decide(
        self,
        request_ids: Iterable[str],
        approve: bool,
        decided_by: Optional[str] = None
    ) -> BulkDecision:
        """Decide each id independently, in the order given."""
        outcome = BulkDecision()
        notes = 'Bulk approval' if approve else 'Bulk rejection'

        for request_id in request_ids:
            try:
                self.decide(request_id, approve, decided_by=decided_by, notes=notes)
            except (NotFound, AlreadyDecided) as e:
                db.session.rollback()
                outcome.failed.append((request_id, e))
            else:
                outcome.succeeded.append(request_id)

        logger.info(
            "Bulk %s: %d succeeded, %d failed",
            'approval' if approve else 'rejection', len(outcome.succeeded), len(outcome.failed)
        )
        return outcome

    # =================== READ-ONLY PROJECTIONS ===================

    def get(self, request_id: str) -> ApprovalRequest:
        request = db.session.get(ApprovalRequest, request_id)
        if request is None:
            raise NotFound(f"Approval request {request_id} not found")
        return request

    def pending(self, **filters) -> List[ApprovalRequest]:
        """Pending requests, oldest first."""
        query = self._filtered(ApprovalRequest.query.filter_by(status=ApprovalStatus.PENDING), **filters)
        return query.order_by(ApprovalRequest.requested_at, ApprovalRequest.id).all()

    def history(self, **filters) -> List[ApprovalRequest]:
        """Decided requests, most recent decision first."""
        query = ApprovalRequest.query.filter(ApprovalRequest.status != ApprovalStatus.PENDING)
        query = self._filtered(query, **filters)
        return query.order_by(ApprovalRequest.decided_at.desc(), ApprovalRequest.id).all()

    def stats(self, manager_id: Optional[str] = None, now: datetime = None) -> Dict[str, Any]:
        """Counts, approval rate and average response time of requests."""
        query = ApprovalRequest.query
        if manager_id:
            query = query.filter_by(manager_id=manager_id)
        requests = query.all()

        now = now or utcnow()
        today = now.date()
        decided = [r for r in requests if not r.is_pending]
        approved = [r for r in decided if r.status == ApprovalStatus.APPROVED]
        response_hours = [
            (r.decided_at - r.requested_at).total_seconds() / 3600 for r in decided if r.decided_at
        ]

        return {
            'total_requests': len(requests),
            'pending_requests': len(requests) - len(decided),
            'approved_requests': len(approved),
            'rejected_requests': len(decided) - len(approved),
            'approval_rate': round(len(approved) / len(decided) * 100, 2) if decided else 0.0,
            'average_response_time_hours': round(sum(response_hours) / len(response_hours), 2)
            if response_hours else 0.0,
            'today_requests': len([r for r in requests if r.requested_at.date() == today]),
            'today_approved': len([r for r in approved if r.decided_at and r.decided_at.date() == today])
        }

    # =================== NOTIFICATIONS & FILTERS ===================

    def notify_requested(self, request: ApprovalRequest) -> None:
        """Announce a committed request to subscribers."""
        logger.info(
            "Queued %s approval %s for user=%s manager=%s",
            request.type.value, request.id, request.user_id, request.manager_id
        )
        self.notifier.emit(
            self.notifier.APPROVAL_REQUESTED, request.id,
            type=request.type.value, status=request.status.value, sender=self
        )

    @staticmethod
    def _approval_type(value) -> ApprovalType:
        try:
            return ApprovalType(value)
        except ValueError:
            allowed = ', '.join(t.value for t in ApprovalType)
            raise ValidationError(f"Unknown approval type '{value}' (expected one of: {allowed})")

    @staticmethod
    def _filtered(
        query,
        request_type=None,
        user_id: Optional[str] = None,
        manager_id: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        search: Optional[str] = None
    ):
        if request_type:
            query = query.filter_by(type=ApprovalWorkflow._approval_type(request_type))
        if user_id:
            query = query.filter_by(user_id=user_id)
        if manager_id:
            query = query.filter_by(manager_id=manager_id)
        if date_from:
            query = query.filter(ApprovalRequest.requested_at >= date_from)
        if date_to:
            # A bare date includes the whole day
            if not isinstance(date_to, datetime):
                date_to = datetime.combine(date_to, datetime.min.time()) + timedelta(days=1)
                query = query.filter(ApprovalRequest.requested_at < date_to)
            else:
                query = query.filter(ApprovalRequest.requested_at <= date_to)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(ApprovalRequest.reason.ilike(pattern))
        return query
