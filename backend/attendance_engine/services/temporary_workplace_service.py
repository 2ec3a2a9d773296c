"""Temporary workplace punches.

Used when a clock event happens outside every registered zone. The handler
does not re-run geofencing; the caller has already decided the fix is out
of zone. All validation happens before anything is written, and the record,
the reusable location update and the approval request share one
transaction.
"""
import logging
from datetime import date
from typing import List, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from attendance_engine import db
from attendance_engine.models.approval import ApprovalRequest
from attendance_engine.models.enums import ApprovalStatus, ApprovalType, PunchType
from attendance_engine.models.location import LocationFix
from attendance_engine.models.temporary_workplace import ReusableWorkplace, TemporaryWorkplaceRecord
from attendance_engine.services.approval_service import ApprovalWorkflow
from attendance_engine.utils.errors import (
    MissingPhoto, MissingReason, NotFound, TemporaryWorkplaceDisabled, ValidationError
)
from attendance_engine.utils.helpers import utcnow
from attendance_engine.utils.validators import Validator

logger = logging.getLogger(__name__)

class TemporaryWorkplaceHandler:
    """Records out-of-zone punches and manages saved locations."""

    def __init__(self, approval_workflow: Optional[ApprovalWorkflow] = None):
        self.approval_workflow = approval_workflow or ApprovalWorkflow()

    def submit_punch(
        self,
        user_id: str,
        punch_type,
        fix: LocationFix,
        reason: Optional[str],
        photo_ref: Optional[str] = None,
        save_as_reusable: bool = False,
        reusable_name: Optional[str] = None,
        reusable_location_id: Optional[int] = None,
        notes: Optional[str] = None,
        manager_id: Optional[str] = None,
        source_event_id: Optional[str] = None
    ) -> TemporaryWorkplaceRecord:
        """Record a punch from a temporary workplace.

        Raises ``MissingReason``/``MissingPhoto`` according to configuration,
        ``ValidationError`` for an unnamed or duplicate reusable location or a
        missing manager, and ``NotFound`` for an unknown reusable location.
        Nothing is written when any of these is raised.
        """
        config = current_app.config
        punch_type = PunchType(punch_type)

        if not config['TEMPORARY_WORKPLACE_ENABLED']:
            raise TemporaryWorkplaceDisabled()

        if config['TEMPORARY_WORKPLACE_REQUIRE_REASON'] and Validator.is_blank(reason):
            raise MissingReason("Please provide a reason for using a temporary workplace")
        reason = reason.strip() if reason else None

        if config['TEMPORARY_WORKPLACE_REQUIRE_PHOTO'] and Validator.is_blank(photo_ref):
            raise MissingPhoto("Please take a photo of your temporary workplace")

        if fix is None:
            raise ValidationError("A location fix is required")

        # Selecting a saved location reuses it; only a fresh one is named and created
        create_reusable = save_as_reusable and reusable_location_id is None
        if create_reusable:
            reusable_name = Validator.validate_required_text(reusable_name, 'location name', max_length=100)
            if ReusableWorkplace.query.filter_by(user_id=user_id, name=reusable_name).first():
                raise ValidationError(f"A saved location named '{reusable_name}' already exists")

        needs_approval = not config['EXCEPTIONAL_ATTENDANCE_AUTO_APPROVE']
        if needs_approval and Validator.is_blank(manager_id):
            raise ValidationError("A manager is required to approve temporary workplace punches")

        reusable = None
        if reusable_location_id is not None:
            reusable = self._get_active_reusable(user_id, reusable_location_id)

        now = utcnow()
        record = TemporaryWorkplaceRecord(
            user_id=user_id,
            date=now.date(),
            type=punch_type,
            time=now.time().replace(microsecond=0),
            reason=reason,
            photo_ref=photo_ref,
            notes=notes,
            is_reusable=create_reusable or reusable is not None,
            created_at=now
        )
        record.location_fix = fix

        approval = None
        try:
            if create_reusable:
                reusable = ReusableWorkplace(
                    user_id=user_id,
                    name=reusable_name,
                    reason=reason,
                    usage_count=1,
                    last_used_at=now
                )
                reusable.location_fix = fix
                db.session.add(reusable)
            elif reusable is not None:
                reusable.usage_count = (reusable.usage_count or 0) + 1
                reusable.last_used_at = now

            record.reusable_location = reusable
            db.session.add(record)

            if needs_approval:
                approval = self.approval_workflow.enqueue(ApprovalRequest(
                    source_event_id=source_event_id,
                    user_id=user_id,
                    manager_id=manager_id,
                    type=ApprovalType.TEMPORARY_WORKPLACE,
                    reason=reason or '',
                    requested_at=now
                ), commit=False)
                record.approval_request = approval
                record.approval_status = ApprovalStatus.PENDING.value

            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if not create_reusable:
                raise
            logger.warning("Concurrent save of reusable location '%s' for user %s", reusable_name, user_id)
            raise ValidationError(f"A saved location named '{reusable_name}' already exists")
        except Exception:
            db.session.rollback()
            raise

        logger.info(
            "Temporary workplace %s recorded for user %s (record %s, %s)",
            punch_type.value, user_id, record.id, record.approval_status
        )
        if approval is not None:
            self.approval_workflow.notify_requested(approval)

        return record

    # =================== REUSABLE LOCATIONS ===================

    def list_reusable(self, user_id: str, include_inactive: bool = False) -> List[ReusableWorkplace]:
        """Saved locations of a user, most recently used first."""
        query = ReusableWorkplace.query.filter_by(user_id=user_id)
        if not include_inactive:
            query = query.filter_by(is_active=True)
        return query.order_by(
            ReusableWorkplace.last_used_at.desc(),
            ReusableWorkplace.id.desc()
        ).all()

    def deactivate_reusable(self, user_id: str, reusable_location_id: int) -> ReusableWorkplace:
        reusable = self._get_active_reusable(user_id, reusable_location_id)
        reusable.is_active = False
        db.session.commit()

        logger.info("Deactivated saved location %s for user %s", reusable.id, user_id)
        return reusable

    def list_records(
        self,
        user_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None
    ) -> List[TemporaryWorkplaceRecord]:
        """Temporary workplace punches of a user, newest first."""
        query = TemporaryWorkplaceRecord.query.filter_by(user_id=user_id)
        if date_from:
            query = query.filter(TemporaryWorkplaceRecord.date >= date_from)
        if date_to:
            query = query.filter(TemporaryWorkplaceRecord.date <= date_to)
        return query.order_by(
            TemporaryWorkplaceRecord.created_at.desc(),
            TemporaryWorkplaceRecord.id.desc()
        ).all()

    @staticmethod
    def _get_active_reusable(user_id: str, reusable_location_id: int) -> ReusableWorkplace:
        reusable = db.session.get(ReusableWorkplace, reusable_location_id)
        if reusable is None or reusable.user_id != user_id or not reusable.is_active:
            raise NotFound(f"Saved location {reusable_location_id} not found")
        return reusable
