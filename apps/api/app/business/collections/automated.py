from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import events
from app.business.calendar import collection_target_date
from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import AutomatedCollectionReport, CollectionResult
from app.business.collections.service import CollectionOrderService
from app.business.cycles.models import SubscriptionCycle
from app.business.outcomes import BatchSummary, CollectionOutcome, Created, Failed, Skipped, Updated
from app.business.schemas import BatchSummaryRead


logger = logging.getLogger("app.billing.collections")


@dataclass(slots=True)
class AutomatedCollectionGenerator:
    orders: CollectionOrderService = field(default_factory=CollectionOrderService)
    order_repository: OrderRepository = OrderRepository()

    def run(self, session: Session, today: date) -> BatchSummary:
        summary, _results = self._generate(session, today)
        return summary

    def generate(self, session: Session, today: date) -> AutomatedCollectionReport:
        summary, results = self._generate(session, today)
        return AutomatedCollectionReport(
            target_date=summary.run_date,
            summary=BatchSummaryRead.from_summary(summary),
            results=results,
        )

    def backfill_missed(self, session: Session, today: date) -> AutomatedCollectionReport:
        """Bill every still-unlinked cycle whose collection day has already passed."""
        target = collection_target_date(today)
        summary = BatchSummary(job_type="collection_backfill", run_date=target)
        cycles = self.order_repository.unbilled_cycles_due_on_or_before(session, target)
        results = [
            self._process(session, cycle, collection_target_date(cycle.payment_due_date), summary) for cycle in cycles
        ]
        return AutomatedCollectionReport(target_date=target, summary=BatchSummaryRead.from_summary(summary), results=results)

    def _generate(self, session: Session, today: date) -> tuple[BatchSummary, list[CollectionResult]]:
        target = collection_target_date(today)
        summary = BatchSummary(job_type="automated_collection", run_date=target)
        cycles = self.order_repository.cycles_due_between(session, target, target + timedelta(days=1))
        results = [self._process(session, cycle, target, summary) for cycle in cycles]
        logger.info(
            "collection.generated",
            extra={"processed": summary.processed, "succeeded": summary.succeeded, "failed": summary.failed},
        )
        return summary, results

    def _process(self, session: Session, cycle: SubscriptionCycle, order_day: date, summary: BatchSummary) -> CollectionResult:
        subscription = cycle.subscription
        base = {
            "cycle_id": cycle.id,
            "subscription_id": subscription.id,
            "customer_id": subscription.customer_id,
            "customer_name": subscription.customer.name,
            "plan_name": subscription.plan.name,
            "payment_due_date": cycle.payment_due_date,
            "pending_balance": cycle.pending_balance,
        }
        outcome = summary.record(self._bill_cycle(session, cycle.id, subscription.customer_id, subscription.id, order_day))
        if isinstance(outcome, (Created, Updated)):
            return CollectionResult(
                **base,
                order_created=isinstance(outcome, Created),
                order_id=outcome.entity_id,
                outcome=outcome.kind,
                notes=outcome.detail,
            )
        return CollectionResult(**base, order_created=False, order_id=None, outcome=outcome.kind, notes=outcome.reason)

    def _bill_cycle(
        self,
        session: Session,
        cycle_id: uuid.UUID,
        customer_id: uuid.UUID,
        subscription_id: uuid.UUID,
        order_day: date,
    ) -> CollectionOutcome:
        try:
            existing_link = self.order_repository.links_for_cycles(session, [cycle_id]).get(cycle_id)
            if existing_link is not None:
                return Skipped(key=cycle_id, reason=f"already billed by order {existing_link}")

            order, created = self.orders.find_or_create_open_order(
                session,
                customer_id,
                order_day,
                is_automated=True,
                subscription_id=subscription_id,
                notes=f"Automated collection for {order_day.isoformat()}",
            )
            self.order_repository.link_cycle(session, order, cycle_id)
            order_id = order.id
            session.commit()
        except IntegrityError:
            session.rollback()
            return Skipped(key=cycle_id, reason="cycle was billed concurrently")
        except Exception as exc:
            session.rollback()
            logger.error(
                "job.item_failed",
                exc_info=True,
                extra={"job_type": "automated_collection", "cycle_id": str(cycle_id), "error": str(exc)[:500]},
            )
            return Failed(key=cycle_id, reason=str(exc)[:500])

        events.publish(
            {
                "event_type": "collection_order.created" if created else "collection_order.cycle_linked",
                "order_id": str(order_id),
                "cycle_id": str(cycle_id),
                "customer_id": str(customer_id),
                "order_date": order_day.isoformat(),
                "is_automated": True,
            }
        )
        if created:
            return Created(key=cycle_id, entity_id=order_id, detail="collection order created")
        return Updated(key=cycle_id, entity_id=order_id, detail="cycle added to existing order")


automated_collection_generator = AutomatedCollectionGenerator()
