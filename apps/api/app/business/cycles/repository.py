from __future__ import annotations

import uuid
from collections.abc import Sequence
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.business.cycles.models import CyclePayment, SubscriptionCycle
from app.business.subscription.models import Subscription
from app.core.repository import BaseRepository


class CycleRepository(BaseRepository[SubscriptionCycle]):
    model = SubscriptionCycle
    resource = "cycle"

    def require_with_details(self, session: Session, cycle_id: uuid.UUID) -> SubscriptionCycle:
        return self.require(
            session,
            cycle_id,
            options=(
                selectinload(SubscriptionCycle.details),
                selectinload(SubscriptionCycle.subscription).selectinload(Subscription.plan),
            ),
        )

    def max_cycle_number(self, session: Session, subscription_id: uuid.UUID) -> int:
        value = session.scalar(
            select(func.coalesce(func.max(SubscriptionCycle.cycle_number), 0)).where(
                SubscriptionCycle.subscription_id == subscription_id
            )
        )
        return int(value or 0)

    def find_covering(self, session: Session, subscription_id: uuid.UUID, day: date) -> SubscriptionCycle | None:
        stmt = (
            select(SubscriptionCycle)
            .where(
                SubscriptionCycle.subscription_id == subscription_id,
                SubscriptionCycle.cycle_start <= day,
                SubscriptionCycle.cycle_end >= day,
            )
            .options(selectinload(SubscriptionCycle.details))
            .order_by(SubscriptionCycle.cycle_number.desc())
            .limit(1)
        )
        return session.scalar(stmt)

    def list_for_subscription(self, session: Session, subscription_id: uuid.UUID) -> list[SubscriptionCycle]:
        stmt = (
            select(SubscriptionCycle)
            .where(SubscriptionCycle.subscription_id == subscription_id)
            .options(selectinload(SubscriptionCycle.details))
            .order_by(SubscriptionCycle.cycle_number, SubscriptionCycle.id)
        )
        return list(session.scalars(stmt).all())

    def list_chronological(self, session: Session, subscription_id: uuid.UUID) -> list[SubscriptionCycle]:
        stmt = (
            select(SubscriptionCycle)
            .where(SubscriptionCycle.subscription_id == subscription_id)
            .order_by(SubscriptionCycle.cycle_start, SubscriptionCycle.id)
        )
        return list(session.scalars(stmt).all())

    def list_by_ids(self, session: Session, cycle_ids: Sequence[uuid.UUID]) -> list[SubscriptionCycle]:
        if not cycle_ids:
            return []
        stmt = (
            select(SubscriptionCycle)
            .where(SubscriptionCycle.id.in_(list(cycle_ids)))
            .options(selectinload(SubscriptionCycle.subscription))
        )
        return list(session.scalars(stmt).all())

    def subscriptions_due_for_renewal(self, session: Session, today: date) -> list[uuid.UUID]:
        latest = (
            select(
                SubscriptionCycle.subscription_id.label("subscription_id"),
                func.max(SubscriptionCycle.cycle_end).label("last_end"),
            )
            .group_by(SubscriptionCycle.subscription_id)
            .subquery()
        )
        stmt = (
            select(Subscription.id)
            .join(latest, latest.c.subscription_id == Subscription.id)
            .where(Subscription.status == "ACTIVE", latest.c.last_end < today)
            .order_by(Subscription.created_at, Subscription.id)
        )
        return list(session.scalars(stmt).all())

    def late_fee_candidates(self, session: Session, due_on_or_before: date) -> list[uuid.UUID]:
        stmt = (
            select(SubscriptionCycle.id)
            .join(Subscription, Subscription.id == SubscriptionCycle.subscription_id)
            .where(
                SubscriptionCycle.payment_due_date <= due_on_or_before,
                SubscriptionCycle.late_fee_applied.is_(False),
                SubscriptionCycle.pending_balance > 0,
                Subscription.status == "ACTIVE",
            )
            .order_by(SubscriptionCycle.payment_due_date, SubscriptionCycle.id)
        )
        return list(session.scalars(stmt).all())

    def pending_for_customer(self, session: Session, customer_id: uuid.UUID) -> list[SubscriptionCycle]:
        stmt = (
            select(SubscriptionCycle)
            .join(Subscription, Subscription.id == SubscriptionCycle.subscription_id)
            .where(Subscription.customer_id == customer_id, SubscriptionCycle.pending_balance > 0)
            .options(selectinload(SubscriptionCycle.subscription).selectinload(Subscription.plan))
            .order_by(SubscriptionCycle.payment_due_date, SubscriptionCycle.cycle_number)
        )
        return list(session.scalars(stmt).all())

    def list_for_customer(self, session: Session, customer_id: uuid.UUID) -> list[SubscriptionCycle]:
        stmt = (
            select(SubscriptionCycle)
            .join(Subscription, Subscription.id == SubscriptionCycle.subscription_id)
            .where(Subscription.customer_id == customer_id)
            .order_by(SubscriptionCycle.payment_due_date)
        )
        return list(session.scalars(stmt).all())


class CyclePaymentRepository(BaseRepository[CyclePayment]):
    model = CyclePayment
    resource = "cycle payment"

    def total_for_cycle(self, session: Session, cycle_id: uuid.UUID) -> Decimal:
        value = session.scalar(select(func.coalesce(func.sum(CyclePayment.amount), 0)).where(CyclePayment.cycle_id == cycle_id))
        return Decimal(value or 0)

    def list_for_cycle(self, session: Session, cycle_id: uuid.UUID) -> list[CyclePayment]:
        stmt = select(CyclePayment).where(CyclePayment.cycle_id == cycle_id).order_by(CyclePayment.payment_date, CyclePayment.created_at)
        return list(session.scalars(stmt).all())
