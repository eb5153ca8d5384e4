from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.orm import Session

from app import events
from app.business.cycles.balances import ZERO, money
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.repository import CycleRepository
from app.business.outcomes import BatchSummary, Failed, LateFeeOutcome, Skipped, Updated
from app.business.subscription.catalog import DbPlanCatalog, PlanCatalog
from app.core.config import get_settings
from app.core.errors import NotFoundError
from app.metrics import observe_late_fee_applied


logger = logging.getLogger("app.billing.late_fees")


@dataclass(slots=True)
class LateFeeEscalator:
    cycle_repository: CycleRepository = CycleRepository()
    catalog: PlanCatalog = field(default_factory=DbPlanCatalog)

    def run(self, session: Session, today: date) -> BatchSummary:
        settings = get_settings()
        summary = BatchSummary(job_type="late_fee_escalation", run_date=today)
        threshold = today - timedelta(days=settings.late_fee_grace_days)
        for cycle_id in self.cycle_repository.late_fee_candidates(session, threshold):
            summary.record(self._escalate_isolated(session, cycle_id, today))
        return summary

    def escalate_cycle(self, session: Session, cycle_id: uuid.UUID, today: date) -> LateFeeOutcome:
        settings = get_settings()
        cycle = self.cycle_repository.require(session, cycle_id)
        if cycle.late_fee_applied:
            return Skipped(key=cycle_id, reason="late fee already applied")
        if Decimal(cycle.pending_balance) <= ZERO:
            return Skipped(key=cycle_id, reason="nothing pending")
        if cycle.payment_due_date > today - timedelta(days=settings.late_fee_grace_days):
            return Skipped(key=cycle_id, reason="within grace period")

        rate = Decimal(settings.late_fee_rate)
        previous_total = Decimal(cycle.total_amount)
        if previous_total > ZERO:
            base = previous_total
        else:
            base = Decimal(self.catalog.get_plan_price(session, cycle.subscription.plan_id))
        surcharge = money(base * rate)
        new_total = money(base + surcharge)
        paid = Decimal(cycle.paid_amount)
        new_pending = max(ZERO, money(new_total - paid))

        # Conditional update keeps the false -> true flip single even when two runs overlap.
        result = session.execute(
            update(SubscriptionCycle)
            .where(SubscriptionCycle.id == cycle_id, SubscriptionCycle.late_fee_applied.is_(False))
            .values(
                total_amount=new_total,
                pending_balance=new_pending,
                credit_balance=max(ZERO, money(paid - new_total)),
                is_overdue=True,
                late_fee_applied=True,
                late_fee_percentage=rate,
                payment_status="OVERDUE" if new_pending > ZERO else "PAID",
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            session.rollback()
            return Skipped(key=cycle_id, reason="late fee already applied")
        session.commit()

        observe_late_fee_applied()
        events.publish(
            {
                "event_type": "cycle.late_fee_applied",
                "cycle_id": str(cycle_id),
                "subscription_id": str(cycle.subscription_id),
                "previous_total": str(previous_total),
                "surcharge": str(surcharge),
                "total_amount": str(new_total),
                "pending_balance": str(new_pending),
            }
        )
        logger.info(
            "cycle.late_fee_applied",
            extra={"cycle_id": str(cycle_id), "subscription_id": str(cycle.subscription_id), "status": "OVERDUE"},
        )
        return Updated(key=cycle_id, entity_id=cycle_id, detail=f"total {previous_total} -> {new_total}")

    def _escalate_isolated(self, session: Session, cycle_id: uuid.UUID, today: date) -> LateFeeOutcome:
        try:
            return self.escalate_cycle(session, cycle_id, today)
        except NotFoundError as exc:
            session.rollback()
            return Skipped(key=cycle_id, reason=exc.detail)
        except Exception as exc:
            session.rollback()
            logger.error(
                "job.item_failed",
                exc_info=True,
                extra={"job_type": "late_fee_escalation", "cycle_id": str(cycle_id), "error": str(exc)[:500]},
            )
            return Failed(key=cycle_id, reason=str(exc)[:500])


late_fee_escalator = LateFeeEscalator()
