from __future__ import annotations

import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.collections.models import CollectionOrder
from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import ExistingOrderRead, ManualCollectionResult, PendingCycleRead
from app.business.collections.service import CollectionOrderService, billable_amount
from app.business.cycles.balances import ZERO, days_overdue, resolve_payment_status
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.repository import CycleRepository
from app.business.subscription.repository import CustomerRepository
from app.core.errors import ConflictError, ValidationError


logger = logging.getLogger("app.billing.collections")


@dataclass(slots=True)
class BillableCycleValidator:
    cycle_repository: CycleRepository = CycleRepository()
    order_repository: OrderRepository = OrderRepository()
    customer_repository: CustomerRepository = CustomerRepository()

    def validate(self, session: Session, customer_id: uuid.UUID, cycle_ids: Sequence[uuid.UUID]) -> list[SubscriptionCycle]:
        """Check every requested cycle before anything is written; all reasons are reported together."""
        customer = self.customer_repository.require(session, customer_id)
        if not customer.is_active:
            raise ValidationError("customer is inactive")
        if not cycle_ids:
            raise ValidationError("at least one cycle is required")

        reasons: list[str] = []
        duplicates = sorted({str(item) for item in cycle_ids if list(cycle_ids).count(item) > 1})
        if duplicates:
            reasons.append(f"duplicated cycles: {', '.join(duplicates)}")

        unique_ids = list(dict.fromkeys(cycle_ids))
        cycles = {cycle.id: cycle for cycle in self.cycle_repository.list_by_ids(session, unique_ids)}
        links = self.order_repository.links_for_cycles(session, unique_ids)
        for cycle_id in unique_ids:
            cycle = cycles.get(cycle_id)
            if cycle is None:
                reasons.append(f"cycle {cycle_id} not found")
                continue
            if cycle.subscription.customer_id != customer_id:
                reasons.append(f"cycle {cycle_id} does not belong to customer {customer_id}")
                continue
            if cycle.subscription.status != "ACTIVE":
                reasons.append(f"cycle {cycle_id} belongs to a {cycle.subscription.status} subscription")
            if Decimal(cycle.pending_balance) <= ZERO:
                reasons.append(f"cycle {cycle_id} has no pending balance")
            if cycle_id in links:
                reasons.append(f"cycle {cycle_id} already billed by order {links[cycle_id]}")

        if reasons:
            raise ValidationError("cycles cannot be billed", reasons)
        return [cycles[cycle_id] for cycle_id in unique_ids]


@dataclass(slots=True)
class ManualCollectionService:
    orders: CollectionOrderService = field(default_factory=CollectionOrderService)
    validator: BillableCycleValidator = field(default_factory=BillableCycleValidator)
    order_repository: OrderRepository = OrderRepository()
    cycle_repository: CycleRepository = CycleRepository()
    customer_repository: CustomerRepository = CustomerRepository()

    def generate(
        self,
        session: Session,
        customer_id: uuid.UUID,
        cycle_ids: Sequence[uuid.UUID],
        collection_date: date,
        *,
        notes: str | None = None,
        actor_user_id: str = audit.SYSTEM_ACTOR,
    ) -> ManualCollectionResult:
        cycles = self.validator.validate(session, customer_id, cycle_ids)

        order, created = self.orders.find_or_create_open_order(
            session,
            customer_id,
            collection_date,
            is_automated=False,
            subscription_id=cycles[0].subscription_id,
            notes=notes or f"Manual collection for {collection_date.isoformat()}",
        )
        return self._attach(session, order, cycles, created=created, actor_user_id=actor_user_id)

    def customer_pending_cycles(self, session: Session, customer_id: uuid.UUID, today: date) -> list[PendingCycleRead]:
        self.customer_repository.require(session, customer_id)
        cycles = self.cycle_repository.pending_for_customer(session, customer_id)
        links = self.order_repository.links_for_cycles(session, [cycle.id for cycle in cycles])
        return [
            PendingCycleRead(
                cycle_id=cycle.id,
                subscription_id=cycle.subscription_id,
                plan_name=cycle.subscription.plan.name,
                cycle_number=cycle.cycle_number,
                payment_due_date=cycle.payment_due_date,
                total_amount=cycle.total_amount,
                pending_balance=cycle.pending_balance,
                days_overdue=days_overdue(cycle, today),
                payment_status=resolve_payment_status(cycle),
                billed_by_order_id=links.get(cycle.id),
            )
            for cycle in cycles
        ]

    def check_existing_order(self, session: Session, customer_id: uuid.UUID, collection_date: date) -> ExistingOrderRead | None:
        self.customer_repository.require(session, customer_id)
        order = self.orders.find_open_order(session, customer_id, collection_date)
        if order is None:
            return None
        return ExistingOrderRead(
            order_id=order.id,
            status=order.status,
            order_date=order.order_date,
            cycle_count=len(order.cycle_links),
            billable_amount=billable_amount(order),
        )

    def _attach(
        self,
        session: Session,
        order: CollectionOrder,
        cycles: Sequence[SubscriptionCycle],
        *,
        created: bool,
        actor_user_id: str,
    ) -> ManualCollectionResult:
        cycle_ids = [cycle.id for cycle in cycles]
        order_id = order.id
        try:
            for cycle_id in cycle_ids:
                self.order_repository.link_cycle(session, order, cycle_id)
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("one or more cycles were billed concurrently")

        order = self.order_repository.require_with_links(session, order_id)
        action = "created" if created else "updated"
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="billing.collection_order",
            entity_id=str(order_id),
            action=f"manual_collection_{action}",
            before=None,
            after={"cycle_ids": [str(item) for item in cycle_ids], "order_date": order.order_date.isoformat()},
        )
        for cycle_id in cycle_ids:
            events.publish(
                {
                    "event_type": "collection_order.created" if created else "collection_order.cycle_linked",
                    "order_id": str(order_id),
                    "cycle_id": str(cycle_id),
                    "customer_id": str(order.customer_id),
                    "order_date": order.order_date.isoformat(),
                    "is_automated": order.is_automated,
                }
            )
            created = False
        logger.info(
            "collection.manual_generated",
            extra={"order_id": str(order_id), "customer_id": str(order.customer_id), "processed": len(cycle_ids)},
        )
        return ManualCollectionResult(
            success=True,
            order_id=order_id,
            action=action,
            billable_amount=billable_amount(order),
            cycles_processed=len(cycle_ids),
            message=f"{len(cycle_ids)} cycle(s) {'billed in new' if action == 'created' else 'added to existing'} order",
        )


manual_collection_service = ManualCollectionService()
