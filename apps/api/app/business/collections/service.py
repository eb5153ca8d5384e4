from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.calendar import collection_target_date
from app.business.collections.models import TERMINAL_ORDER_STATUSES, CollectionOrder
from app.business.collections.orders import VALID_ORDER_TRANSITIONS, OrderCreationService
from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import (
    CollectionOrderRead,
    LinkedCycleRead,
    OrderCreate,
    UpcomingCollectionRead,
)
from app.business.cycles.balances import ZERO, money
from app.business.outcomes import BatchSummary, Failed, Skipped, Updated
from app.core.config import get_settings
from app.core.errors import ConflictError, OrderValidationError, ValidationError
from app.metrics import observe_collection_order_created


logger = logging.getLogger("app.billing.collections")

OVERDUE_EXEMPT_STATUSES = ("OVERDUE", "DELIVERED", "CANCELLED", "REFUNDED")


def billable_amount(order: CollectionOrder) -> Decimal:
    """Amount still owed on the cycles an order bills; the order row itself carries no copy of it."""
    return money(sum((Decimal(link.cycle.pending_balance) for link in order.cycle_links), ZERO))


@dataclass(slots=True)
class CollectionOrderService:
    order_creation: OrderCreationService = field(default_factory=OrderCreationService)
    order_repository: OrderRepository = OrderRepository()

    def find_open_order(self, session: Session, customer_id: uuid.UUID, day: date) -> CollectionOrder | None:
        return self.order_repository.find_open_for_customer_day(session, customer_id, day)

    def find_or_create_open_order(
        self,
        session: Session,
        customer_id: uuid.UUID,
        day: date,
        *,
        is_automated: bool,
        subscription_id: uuid.UUID | None = None,
        notes: str | None = None,
    ) -> tuple[CollectionOrder, bool]:
        existing = self.find_open_order(session, customer_id, day)
        if existing is not None:
            return existing, False

        payload = OrderCreate(
            customer_id=customer_id,
            subscription_id=subscription_id,
            order_date=day,
            scheduled_delivery_date=day,
            status="PENDING",
            is_automated=is_automated,
            notes=notes,
        )
        origin = "automated" if is_automated else "manual"
        try:
            try:
                order = self.order_creation.create_order(session, payload)
                path = "primary"
            except OrderValidationError as exc:
                logger.warning(
                    "collection_order.primary_create_rejected",
                    extra={"customer_id": str(customer_id), "error": exc.detail},
                )
                order = self.order_creation.insert_minimal(session, payload)
                path = "fallback"
        except IntegrityError:
            # Another writer opened the order for this customer-day first.
            session.rollback()
            existing = self.find_open_order(session, customer_id, day)
            if existing is None:
                raise ConflictError(f"open order for customer {customer_id} on {day.isoformat()} is locked")
            return existing, False

        observe_collection_order_created(origin=origin, path=path)
        logger.info(
            "collection_order.created",
            extra={"order_id": str(order.id), "customer_id": str(customer_id), "status": path},
        )
        return order, True

    def list_orders(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID | None = None,
        status: str | None = None,
        order_date: date | None = None,
        is_automated: bool | None = None,
    ) -> list[CollectionOrderRead]:
        rows = self.order_repository.list_orders(
            session,
            customer_id=customer_id,
            status=status,
            order_date=order_date,
            is_automated=is_automated,
        )
        return [self.to_order_read(row) for row in rows]

    def get_order(self, session: Session, order_id: uuid.UUID) -> CollectionOrderRead:
        return self.to_order_read(self.order_repository.require_with_links(session, order_id))

    def transition_order(self, order: CollectionOrder, target_status: str) -> None:
        allowed = VALID_ORDER_TRANSITIONS.get(order.status, set())
        if target_status not in allowed:
            raise ValidationError(f"invalid order status transition {order.status} -> {target_status}")
        order.status = target_status

    def cancel_order(self, session: Session, order_id: uuid.UUID, *, actor_user_id: str = audit.SYSTEM_ACTOR) -> CollectionOrderRead:
        order = self.order_repository.require_with_links(session, order_id)
        if order.status in TERMINAL_ORDER_STATUSES:
            raise ValidationError(f"order is already {order.status}")

        paid_cycles = [link.cycle_id for link in order.cycle_links if Decimal(link.cycle.paid_amount) > ZERO]
        if Decimal(order.paid_amount) > ZERO or paid_cycles:
            raise ValidationError("order has payments and cannot be cancelled", [f"cycle {item} has payments" for item in paid_cycles])

        before = {"status": order.status, "cycle_ids": [str(link.cycle_id) for link in order.cycle_links]}
        self.transition_order(order, "CANCELLED")
        # Released cycles become billable again.
        order.cycle_links.clear()
        session.commit()
        session.refresh(order)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="billing.collection_order",
            entity_id=str(order.id),
            action="cancel",
            before=before,
            after={"status": order.status, "cycle_ids": []},
        )
        events.publish(
            {
                "event_type": "collection_order.cancelled",
                "order_id": str(order.id),
                "customer_id": str(order.customer_id),
                "released_cycle_ids": before["cycle_ids"],
            }
        )
        return self.to_order_read(order)

    def upcoming_collections(self, session: Session, today: date, days: int = 7) -> list[UpcomingCollectionRead]:
        if days < 1:
            raise ValidationError("days must be at least 1")
        cycles = self.order_repository.unbilled_cycles_due_between(session, today, today + timedelta(days=days))
        return [
            UpcomingCollectionRead(
                cycle_id=cycle.id,
                subscription_id=cycle.subscription_id,
                customer_id=cycle.subscription.customer_id,
                customer_name=cycle.subscription.customer.name,
                payment_due_date=cycle.payment_due_date,
                collection_date=collection_target_date(cycle.payment_due_date),
                pending_balance=cycle.pending_balance,
            )
            for cycle in cycles
        ]

    def mark_overdue_orders(self, session: Session, today: date) -> BatchSummary:
        summary = BatchSummary(job_type="overdue_orders", run_date=today)
        cutoff = today - timedelta(days=get_settings().overdue_order_days)
        for order_id in self.order_repository.stale_order_ids(session, cutoff, OVERDUE_EXEMPT_STATUSES):
            try:
                order = self.order_repository.require(session, order_id)
                previous = order.status
                self.transition_order(order, "OVERDUE")
                session.commit()
                summary.record(Updated(key=order_id, entity_id=order_id, detail=f"{previous} -> OVERDUE"))
            except ValidationError as exc:
                session.rollback()
                summary.record(Skipped(key=order_id, reason=exc.detail))
            except Exception as exc:
                session.rollback()
                logger.error(
                    "job.item_failed",
                    exc_info=True,
                    extra={"job_type": "overdue_orders", "order_id": str(order_id), "error": str(exc)[:500]},
                )
                summary.record(Failed(key=order_id, reason=str(exc)[:500]))
        return summary

    def to_order_read(self, order: CollectionOrder) -> CollectionOrderRead:
        payload = CollectionOrderRead.model_validate(order).model_dump()
        payload["billable_amount"] = billable_amount(order)
        payload["cycles"] = [
            LinkedCycleRead(
                cycle_id=link.cycle.id,
                subscription_id=link.cycle.subscription_id,
                cycle_number=link.cycle.cycle_number,
                payment_due_date=link.cycle.payment_due_date,
                pending_balance=link.cycle.pending_balance,
                payment_status=link.cycle.payment_status,
            )
            for link in sorted(order.cycle_links, key=lambda item: (item.cycle.payment_due_date, item.cycle.cycle_number))
        ]
        return CollectionOrderRead(**payload)


collection_order_service = CollectionOrderService()
