from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.orm import Session

from app.business.cycles.balances import money
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.numbering import CycleNumberingAuthority
from app.business.cycles.repository import CycleRepository
from app.business.outcomes import BatchSummary, Created, Failed, RenewalOutcome, Skipped
from app.business.subscription.catalog import DbPlanCatalog, PlanCatalog, PricingCalculator
from app.business.subscription.repository import SubscriptionRepository
from app.core.config import get_settings
from app.core.errors import ConflictError, CycleNumberConflictError, NotFoundError


logger = logging.getLogger("app.billing.renewal")


@dataclass(slots=True)
class CycleRenewalScheduler:
    numbering: CycleNumberingAuthority = field(default_factory=CycleNumberingAuthority)
    catalog: PlanCatalog = field(default_factory=DbPlanCatalog)
    pricing: PricingCalculator = field(default_factory=PricingCalculator)
    cycle_repository: CycleRepository = CycleRepository()
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def run(self, session: Session, today: date) -> BatchSummary:
        summary = BatchSummary(job_type="cycle_renewal", run_date=today)
        subscription_ids = self.cycle_repository.subscriptions_due_for_renewal(session, today)
        for subscription_id in subscription_ids:
            summary.record(self._renew_isolated(session, subscription_id, today))
        return summary

    def renew_subscription(self, session: Session, subscription_id: uuid.UUID, today: date) -> RenewalOutcome:
        subscription = self.subscription_repository.require(session, subscription_id)
        if subscription.status != "ACTIVE":
            return Skipped(key=subscription_id, reason=f"subscription is {subscription.status}")

        cycle, created = self.open_cycle(session, subscription_id, today)
        if not created:
            return Skipped(key=subscription_id, reason=f"cycle {cycle.cycle_number} already covers {today.isoformat()}")
        logger.info(
            "cycle.renewed",
            extra={"subscription_id": str(subscription_id), "cycle_id": str(cycle.id), "status": "Created"},
        )
        return Created(key=subscription_id, entity_id=cycle.id, detail=f"cycle {cycle.cycle_number}")

    def open_cycle(self, session: Session, subscription_id: uuid.UUID, start: date) -> tuple[SubscriptionCycle, bool]:
        """Return the cycle covering ``start``, creating it when missing.

        Both the daily renewal and on-demand quota lookups land here; losing the
        numbering race re-reads instead of failing.
        """
        settings = get_settings()
        for _attempt in range(settings.cycle_create_max_attempts):
            existing = self.cycle_repository.find_covering(session, subscription_id, start)
            if existing is not None:
                return existing, False

            subscription = self.subscription_repository.require_with_plan(session, subscription_id)
            cycle_days = subscription.plan.cycle_days or settings.default_cycle_days
            cycle_end = start + timedelta(days=cycle_days - 1)
            products = self.catalog.get_plan_products(session, subscription.plan_id)
            # Priced before the insert so the cycle never commits without its total.
            total_amount = money(self.pricing.cycle_total(session, subscription.plan_id, products))
            try:
                cycle = self.numbering.create_cycle(
                    session,
                    subscription_id,
                    cycle_start=start,
                    cycle_end=cycle_end,
                    payment_due_date=cycle_end + timedelta(days=settings.payment_due_offset_days),
                    total_amount=total_amount,
                    products=products,
                )
            except CycleNumberConflictError:
                continue
            return cycle, True

        raise ConflictError(f"could not allocate a cycle number for subscription {subscription_id}")

    def _renew_isolated(self, session: Session, subscription_id: uuid.UUID, today: date) -> RenewalOutcome:
        try:
            return self.renew_subscription(session, subscription_id, today)
        except NotFoundError as exc:
            session.rollback()
            return Skipped(key=subscription_id, reason=exc.detail)
        except Exception as exc:
            session.rollback()
            logger.error(
                "job.item_failed",
                exc_info=True,
                extra={"job_type": "cycle_renewal", "subscription_id": str(subscription_id), "error": str(exc)[:500]},
            )
            return Failed(key=subscription_id, reason=str(exc)[:500])


cycle_renewal = CycleRenewalScheduler()
