from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.cycles.balances import ZERO, money, recompute_cycle_balances, recompute_detail_balance
from app.business.cycles.models import SubscriptionCycle, SubscriptionCycleDetail
from app.business.cycles.repository import CycleRepository
from app.business.cycles.schemas import CycleStats, SequenceChange, SequenceIntegrityReport, SequenceRepairResult
from app.business.subscription.catalog import PlanProductLine
from app.business.subscription.repository import SubscriptionRepository
from app.core.errors import CycleNumberConflictError, ValidationError
from app.metrics import observe_cycle_number_conflict


logger = logging.getLogger("app.billing.cycles")


@dataclass(slots=True)
class CycleNumberingAuthority:
    cycle_repository: CycleRepository = CycleRepository()
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def next_cycle_number(self, session: Session, subscription_id: uuid.UUID) -> int:
        return self.cycle_repository.max_cycle_number(session, subscription_id) + 1

    def create_cycle(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        *,
        cycle_start: date,
        cycle_end: date,
        payment_due_date: date,
        total_amount: Decimal | None = None,
        products: Sequence[PlanProductLine] = (),
    ) -> SubscriptionCycle:
        """Insert the next numbered cycle and its detail lines in one transaction.

        A concurrent writer that already took the number surfaces as
        CycleNumberConflictError; the caller recomputes the number instead of
        retrying with the stale one.
        """
        if cycle_end < cycle_start:
            raise ValidationError("invalid cycle window", [f"cycle_end {cycle_end} precedes cycle_start {cycle_start}"])
        if payment_due_date < cycle_start:
            raise ValidationError("invalid cycle window", [f"payment_due_date {payment_due_date} precedes cycle_start {cycle_start}"])

        self.subscription_repository.require(session, subscription_id)
        cycle_number = self.next_cycle_number(session, subscription_id)

        cycle = SubscriptionCycle(
            subscription_id=subscription_id,
            cycle_number=cycle_number,
            cycle_start=cycle_start,
            cycle_end=cycle_end,
            payment_due_date=payment_due_date,
            total_amount=money(total_amount) if total_amount is not None else ZERO,
            paid_amount=ZERO,
            is_overdue=False,
            late_fee_applied=False,
        )
        recompute_cycle_balances(cycle)
        for product in products:
            cycle.details.append(
                recompute_detail_balance(
                    SubscriptionCycleDetail(
                        product_id=product.product_id,
                        planned_quantity=int(product.quantity),
                        delivered_quantity=0,
                    )
                )
            )

        session.add(cycle)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            observe_cycle_number_conflict()
            logger.warning(
                "cycle.number_conflict",
                extra={"subscription_id": str(subscription_id), "cycle_number": cycle_number},
            )
            raise CycleNumberConflictError(subscription_id, cycle_number)
        session.refresh(cycle)

        events.publish(
            {
                "event_type": "cycle.created",
                "subscription_id": str(subscription_id),
                "cycle_id": str(cycle.id),
                "cycle_number": cycle.cycle_number,
                "cycle_start": cycle.cycle_start.isoformat(),
                "cycle_end": cycle.cycle_end.isoformat(),
            }
        )
        return cycle

    def renumber_sequence(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        *,
        dry_run: bool = True,
        actor_user_id: str = audit.SYSTEM_ACTOR,
    ) -> SequenceRepairResult:
        self.subscription_repository.require(session, subscription_id)
        cycles = self.cycle_repository.list_chronological(session, subscription_id)

        changes = [
            SequenceChange(cycle_id=cycle.id, old_number=cycle.cycle_number, new_number=position)
            for position, cycle in enumerate(cycles, start=1)
            if cycle.cycle_number != position
        ]
        if dry_run or not changes:
            return SequenceRepairResult(subscription_id=subscription_id, dry_run=dry_run, changes=changes)

        by_id = {cycle.id: cycle for cycle in cycles}
        # Park changed rows on negative numbers so the unique constraint holds between the two passes.
        for change in changes:
            by_id[change.cycle_id].cycle_number = -change.new_number
        session.flush()
        for change in changes:
            by_id[change.cycle_id].cycle_number = change.new_number
        session.commit()

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="billing.subscription",
            entity_id=str(subscription_id),
            action="renumber_cycles",
            before={str(item.cycle_id): item.old_number for item in changes},
            after={str(item.cycle_id): item.new_number for item in changes},
        )
        logger.info("cycle.sequence_repaired", extra={"subscription_id": str(subscription_id), "processed": len(changes)})
        return SequenceRepairResult(subscription_id=subscription_id, dry_run=False, changes=changes)

    def verify_integrity(self, session: Session, subscription_id: uuid.UUID) -> SequenceIntegrityReport:
        self.subscription_repository.require(session, subscription_id)
        numbers = [cycle.cycle_number for cycle in self.cycle_repository.list_for_subscription(session, subscription_id)]
        if not numbers:
            return SequenceIntegrityReport(
                subscription_id=subscription_id,
                is_valid=True,
                starts_at_one=True,
                expected_next_number=1,
            )

        counts = Counter(numbers)
        duplicates = sorted(number for number, count in counts.items() if count > 1)
        highest = max(numbers)
        gaps = [number for number in range(1, highest + 1) if number not in counts]
        starts_at_one = min(numbers) == 1
        return SequenceIntegrityReport(
            subscription_id=subscription_id,
            is_valid=starts_at_one and not gaps and not duplicates,
            starts_at_one=starts_at_one,
            gaps=gaps,
            duplicates=duplicates,
            expected_next_number=highest + 1,
        )

    def cycle_stats(self, session: Session, subscription_id: uuid.UUID) -> CycleStats:
        self.subscription_repository.require(session, subscription_id)
        cycles = self.cycle_repository.list_for_subscription(session, subscription_id)
        return CycleStats(
            subscription_id=subscription_id,
            total_cycles=len(cycles),
            paid_cycles=sum(1 for cycle in cycles if cycle.payment_status in {"PAID", "CREDITED"}),
            pending_cycles=sum(1 for cycle in cycles if cycle.payment_status in {"PENDING", "PARTIAL"}),
            overdue_cycles=sum(1 for cycle in cycles if cycle.payment_status == "OVERDUE"),
            total_amount=money(sum((Decimal(cycle.total_amount) for cycle in cycles), ZERO)),
            paid_amount=money(sum((Decimal(cycle.paid_amount) for cycle in cycles), ZERO)),
            pending_amount=money(sum((Decimal(cycle.pending_balance) for cycle in cycles), ZERO)),
            current_cycle_number=max((cycle.cycle_number for cycle in cycles), default=None),
        )


cycle_numbering = CycleNumberingAuthority()
