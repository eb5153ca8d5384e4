from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app import events
from app.business.calendar import next_business_day
from app.business.outcomes import BatchSummary, Failed, ReassignmentOutcome, Rescheduled, Skipped
from app.business.routing.directory import RouteDirectory
from app.business.routing.models import CancellationOrder, RouteSheetDetail
from app.business.routing.repository import CancellationOrderRepository, RouteSheetDetailRepository
from app.business.routing.schemas import (
    CancellationOrderRead,
    CancellationReassignmentStats,
    DeliveryReassignmentStats,
)
from app.core.config import get_settings
from app.core.errors import NotFoundError, ValidationError


logger = logging.getLogger("app.billing.reassignment")

FAILABLE_CANCELLATION_STATUSES = ("SCHEDULED", "IN_PROGRESS")


def _append_note(current: str | None, note: str) -> str:
    return f"{current} | {note}" if current else note


def _isolated(job_type: str, key_field: str, key: uuid.UUID, session: Session, action) -> ReassignmentOutcome:
    try:
        return action()
    except NotFoundError as exc:
        session.rollback()
        return Skipped(key=key, reason=exc.detail)
    except Exception as exc:
        session.rollback()
        logger.error(
            "job.item_failed",
            exc_info=True,
            extra={"job_type": job_type, key_field: str(key), "error": str(exc)[:500]},
        )
        return Failed(key=key, reason=str(exc)[:500])


@dataclass(slots=True)
class FailedDeliveryReassignmentScheduler:
    directory: RouteDirectory = field(default_factory=RouteDirectory)
    detail_repository: RouteSheetDetailRepository = RouteSheetDetailRepository()

    def run(self, session: Session, today: date) -> BatchSummary:
        max_retries = get_settings().reassignment_max_retries
        summary = BatchSummary(job_type="delivery_reassignment", run_date=today)
        for detail_id in self.detail_repository.reassignable_ids(session, today, max_retries):
            summary.record(
                _isolated(
                    "delivery_reassignment",
                    "task_id",
                    detail_id,
                    session,
                    lambda detail_id=detail_id: self.reassign(session, detail_id, today),
                )
            )
        return summary

    def reassign(self, session: Session, detail_id: uuid.UUID, today: date) -> ReassignmentOutcome:
        max_retries = get_settings().reassignment_max_retries
        detail = self.detail_repository.require_for_reassignment(session, detail_id)
        if detail.delivery_status != "FAILED":
            return Skipped(key=detail_id, reason=f"delivery is {detail.delivery_status}")
        if detail.reschedule_date is not None:
            return Skipped(key=detail_id, reason=f"already rescheduled to {detail.reschedule_date.isoformat()}")
        if detail.retry_count >= max_retries:
            return Skipped(key=detail_id, reason="max retries reached")

        target = next_business_day(today)
        order = detail.order
        sheet = self.directory.get_or_create_route_sheet(
            session,
            target,
            order.customer.zone_id,
            notes="Opened automatically for failed delivery reassignment",
        )

        detail.reschedule_date = target
        detail.rescheduled_on = today
        detail.comments = _append_note(detail.comments, "rescheduled automatically after failed delivery")
        replacement = RouteSheetDetail(
            route_sheet_id=sheet.id,
            order_id=detail.order_id,
            delivery_status="PENDING",
            retry_count=detail.retry_count + 1,
            comments=f"reassigned from failed delivery {detail.id}",
        )
        session.add(replacement)
        order.scheduled_delivery_date = target
        session.commit()

        events.publish(
            {
                "event_type": "delivery.rescheduled",
                "detail_id": str(detail_id),
                "replacement_id": str(replacement.id),
                "order_id": str(detail.order_id),
                "route_sheet_id": str(sheet.id),
                "target_date": target.isoformat(),
                "retry_count": replacement.retry_count,
            }
        )
        logger.info(
            "delivery.rescheduled",
            extra={"task_id": str(detail_id), "order_id": str(detail.order_id), "target_date": target.isoformat()},
        )
        return Rescheduled(key=detail_id, entity_id=replacement.id, target_date=target)

    def stats(self, session: Session, today: date) -> DeliveryReassignmentStats:
        counts = self.detail_repository.failure_stats(session, today, get_settings().reassignment_max_retries)
        return DeliveryReassignmentStats(**counts)


@dataclass(slots=True)
class FailedCancellationReassignmentScheduler:
    directory: RouteDirectory = field(default_factory=RouteDirectory)
    cancellation_repository: CancellationOrderRepository = CancellationOrderRepository()

    def run(self, session: Session, today: date) -> BatchSummary:
        max_retries = get_settings().reassignment_max_retries
        summary = BatchSummary(job_type="cancellation_reassignment", run_date=today)
        for cancellation_id in self.cancellation_repository.reassignable_ids(session, today, max_retries):
            summary.record(
                _isolated(
                    "cancellation_reassignment",
                    "task_id",
                    cancellation_id,
                    session,
                    lambda cancellation_id=cancellation_id: self.reassign(session, cancellation_id, today),
                )
            )
        return summary

    def reassign(self, session: Session, cancellation_id: uuid.UUID, today: date) -> ReassignmentOutcome:
        max_retries = get_settings().reassignment_max_retries
        task = self.cancellation_repository.require_with_customer(session, cancellation_id)
        if task.status != "CANCELLED":
            return Skipped(key=cancellation_id, reason=f"pickup is {task.status}")
        if task.rescheduled_count >= max_retries:
            return Skipped(key=cancellation_id, reason="max retries reached")

        target = next_business_day(today)
        sheet = self.directory.get_or_create_route_sheet(
            session,
            target,
            task.subscription.customer.zone_id,
            notes="Opened automatically for pickup reassignment",
        )

        task.scheduled_collection_date = target
        task.route_sheet_id = sheet.id
        task.status = "SCHEDULED"
        task.rescheduled_count = task.rescheduled_count + 1
        task.last_rescheduled_on = today
        task.notes = _append_note(task.notes, f"rescheduled automatically to {target.isoformat()}")
        session.commit()

        events.publish(
            {
                "event_type": "cancellation.rescheduled",
                "cancellation_id": str(cancellation_id),
                "subscription_id": str(task.subscription_id),
                "route_sheet_id": str(sheet.id),
                "target_date": target.isoformat(),
                "rescheduled_count": task.rescheduled_count,
            }
        )
        logger.info(
            "cancellation.rescheduled",
            extra={"task_id": str(cancellation_id), "subscription_id": str(task.subscription_id), "target_date": target.isoformat()},
        )
        return Rescheduled(key=cancellation_id, entity_id=cancellation_id, target_date=target)

    def mark_cancellation_failed(self, session: Session, cancellation_id: uuid.UUID, reason: str) -> CancellationOrderRead:
        task = self.cancellation_repository.require(session, cancellation_id)
        if task.status not in FAILABLE_CANCELLATION_STATUSES:
            raise ValidationError(f"pickup is {task.status} and cannot be marked as failed")
        task.status = "CANCELLED"
        task.notes = _append_note(task.notes, f"failed: {reason}")
        session.commit()
        session.refresh(task)
        logger.info("cancellation.failed", extra={"task_id": str(cancellation_id), "status": task.status})
        return CancellationOrderRead.model_validate(task)

    def stats(self, session: Session, today: date) -> CancellationReassignmentStats:
        counts = self.cancellation_repository.failure_stats(session, today, get_settings().reassignment_max_retries)
        return CancellationReassignmentStats(**counts)


delivery_reassignment = FailedDeliveryReassignmentScheduler()
cancellation_reassignment = FailedCancellationReassignmentScheduler()
