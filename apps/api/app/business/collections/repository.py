from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import date

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from app.business.collections.models import OPEN_ORDER_STATUSES, CollectionOrder, CollectionOrderCycle
from app.business.cycles.models import SubscriptionCycle
from app.business.subscription.models import Customer, Subscription
from app.core.repository import BaseRepository


def _billable_cycles() -> Select[tuple[SubscriptionCycle]]:
    return (
        select(SubscriptionCycle)
        .join(Subscription, Subscription.id == SubscriptionCycle.subscription_id)
        .join(Customer, Customer.id == Subscription.customer_id)
        .where(SubscriptionCycle.pending_balance > 0, Subscription.status == "ACTIVE")
        .options(
            selectinload(SubscriptionCycle.subscription).selectinload(Subscription.customer),
            selectinload(SubscriptionCycle.subscription).selectinload(Subscription.plan),
        )
    )


class OrderRepository(BaseRepository[CollectionOrder]):
    model = CollectionOrder
    resource = "collection order"

    def require_with_links(self, session: Session, order_id: uuid.UUID) -> CollectionOrder:
        return self.require(
            session,
            order_id,
            options=(selectinload(CollectionOrder.cycle_links).selectinload(CollectionOrderCycle.cycle),),
        )

    def find_open_for_customer_day(self, session: Session, customer_id: uuid.UUID, day: date) -> CollectionOrder | None:
        stmt = (
            select(CollectionOrder)
            .where(
                CollectionOrder.customer_id == customer_id,
                CollectionOrder.order_date == day,
                CollectionOrder.status.in_(OPEN_ORDER_STATUSES),
            )
            .options(selectinload(CollectionOrder.cycle_links).selectinload(CollectionOrderCycle.cycle))
            .order_by(CollectionOrder.created_at)
            .limit(1)
        )
        return session.scalar(stmt)

    def links_for_cycles(self, session: Session, cycle_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, uuid.UUID]:
        if not cycle_ids:
            return {}
        rows = session.execute(
            select(CollectionOrderCycle.cycle_id, CollectionOrderCycle.order_id).where(
                CollectionOrderCycle.cycle_id.in_(list(cycle_ids))
            )
        ).all()
        return {cycle_id: order_id for cycle_id, order_id in rows}

    def link_cycle(self, session: Session, order: CollectionOrder, cycle_id: uuid.UUID) -> CollectionOrderCycle:
        link = CollectionOrderCycle(order_id=order.id, cycle_id=cycle_id)
        order.cycle_links.append(link)
        session.flush()
        return link

    def cycles_due_between(self, session: Session, start: date, end: date) -> list[SubscriptionCycle]:
        stmt = (
            _billable_cycles()
            .where(SubscriptionCycle.payment_due_date >= start, SubscriptionCycle.payment_due_date < end)
            .order_by(Customer.name, SubscriptionCycle.id)
        )
        return list(session.scalars(stmt).all())

    def unbilled_cycles_due_on_or_before(self, session: Session, day: date) -> list[SubscriptionCycle]:
        stmt = (
            _billable_cycles()
            .outerjoin(CollectionOrderCycle, CollectionOrderCycle.cycle_id == SubscriptionCycle.id)
            .where(SubscriptionCycle.payment_due_date <= day, CollectionOrderCycle.id.is_(None))
            .order_by(SubscriptionCycle.payment_due_date, Customer.name, SubscriptionCycle.id)
        )
        return list(session.scalars(stmt).all())

    def unbilled_cycles_due_between(self, session: Session, start: date, end: date) -> list[SubscriptionCycle]:
        stmt = (
            _billable_cycles()
            .outerjoin(CollectionOrderCycle, CollectionOrderCycle.cycle_id == SubscriptionCycle.id)
            .where(
                SubscriptionCycle.payment_due_date >= start,
                SubscriptionCycle.payment_due_date <= end,
                CollectionOrderCycle.id.is_(None),
            )
            .order_by(SubscriptionCycle.payment_due_date, Customer.name)
        )
        return list(session.scalars(stmt).all())

    def list_orders(
        self,
        session: Session,
        *,
        customer_id: uuid.UUID | None = None,
        status: str | None = None,
        order_date: date | None = None,
        is_automated: bool | None = None,
    ) -> list[CollectionOrder]:
        stmt = select(CollectionOrder).options(
            selectinload(CollectionOrder.cycle_links).selectinload(CollectionOrderCycle.cycle)
        )
        if customer_id is not None:
            stmt = stmt.where(CollectionOrder.customer_id == customer_id)
        if status is not None:
            stmt = stmt.where(CollectionOrder.status == status)
        if order_date is not None:
            stmt = stmt.where(CollectionOrder.order_date == order_date)
        if is_automated is not None:
            stmt = stmt.where(CollectionOrder.is_automated.is_(is_automated))
        return list(session.scalars(stmt.order_by(CollectionOrder.order_date.desc(), CollectionOrder.created_at)).all())

    def stale_order_ids(self, session: Session, before: date, excluded_statuses: Sequence[str]) -> list[uuid.UUID]:
        stmt = (
            select(CollectionOrder.id)
            .where(CollectionOrder.order_date < before, CollectionOrder.status.not_in(list(excluded_statuses)))
            .order_by(CollectionOrder.order_date, CollectionOrder.id)
        )
        return list(session.scalars(stmt).all())

    def orders_for_day(self, session: Session, day: date, zone_id: uuid.UUID | None = None) -> list[CollectionOrder]:
        stmt = (
            select(CollectionOrder)
            .join(Customer, Customer.id == CollectionOrder.customer_id)
            .where(CollectionOrder.order_date == day, CollectionOrder.status.not_in(["CANCELLED", "REFUNDED"]))
            .options(
                selectinload(CollectionOrder.customer),
                selectinload(CollectionOrder.cycle_links)
                .selectinload(CollectionOrderCycle.cycle)
                .selectinload(SubscriptionCycle.details),
            )
            .order_by(Customer.name, CollectionOrder.id)
        )
        if zone_id is not None:
            stmt = stmt.where(Customer.zone_id == zone_id)
        return list(session.scalars(stmt).all())
