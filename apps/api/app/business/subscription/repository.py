from __future__ import annotations

import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.business.subscription.models import Customer, Subscription, SubscriptionPlan
from app.core.repository import BaseRepository


class CustomerRepository(BaseRepository[Customer]):
    model = Customer
    resource = "customer"

    def list_active(self, session: Session) -> list[Customer]:
        return list(session.scalars(select(Customer).where(Customer.is_active.is_(True)).order_by(Customer.name)).all())


class PlanRepository(BaseRepository[SubscriptionPlan]):
    model = SubscriptionPlan
    resource = "subscription plan"

    def get_with_products(self, session: Session, plan_id: uuid.UUID) -> SubscriptionPlan | None:
        return self.get(session, plan_id, options=(selectinload(SubscriptionPlan.products),))

    def list_all(self, session: Session) -> list[SubscriptionPlan]:
        stmt = select(SubscriptionPlan).options(selectinload(SubscriptionPlan.products)).order_by(SubscriptionPlan.name)
        return list(session.scalars(stmt).all())


class SubscriptionRepository(BaseRepository[Subscription]):
    model = Subscription
    resource = "subscription"

    def require_with_plan(self, session: Session, subscription_id: uuid.UUID) -> Subscription:
        return self.require(
            session,
            subscription_id,
            options=(selectinload(Subscription.plan).selectinload(SubscriptionPlan.products), selectinload(Subscription.customer)),
        )

    def list_for_customer(self, session: Session, customer_id: uuid.UUID) -> list[Subscription]:
        stmt = select(Subscription).where(Subscription.customer_id == customer_id).order_by(Subscription.start_date)
        return list(session.scalars(stmt).all())
