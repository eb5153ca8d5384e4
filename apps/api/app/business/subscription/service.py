from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit, events
from app.business.calendar import next_business_day
from app.business.cycles.renewal import CycleRenewalScheduler
from app.business.routing.models import CancellationOrder
from app.business.routing.schemas import CancellationOrderRead
from app.business.subscription.models import Customer, Subscription, SubscriptionPlan, SubscriptionPlanProduct
from app.business.subscription.repository import CustomerRepository, PlanRepository, SubscriptionRepository
from app.business.subscription.schemas import (
    CancelSubscriptionRequest,
    CustomerCreate,
    CustomerRead,
    PlanCreate,
    PlanRead,
    ResumeSubscriptionRequest,
    SubscriptionCreate,
    SubscriptionRead,
    SuspendSubscriptionRequest,
)
from app.core.errors import ConflictError, NotFoundError, ValidationError


logger = logging.getLogger("app.billing.subscriptions")

VALID_SUBSCRIPTION_TRANSITIONS: dict[str, set[str]] = {
    "ACTIVE": {"SUSPENDED", "CANCELLED", "EXPIRED"},
    "SUSPENDED": {"ACTIVE", "CANCELLED"},
    "CANCELLED": set(),
    "EXPIRED": set(),
}


@dataclass(slots=True)
class SubscriptionService:
    renewal: CycleRenewalScheduler = field(default_factory=CycleRenewalScheduler)
    customer_repository: CustomerRepository = CustomerRepository()
    plan_repository: PlanRepository = PlanRepository()
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def create_customer(self, session: Session, payload: CustomerCreate) -> CustomerRead:
        customer = self.customer_repository.add(session, Customer(**payload.model_dump()))
        session.commit()
        session.refresh(customer)
        return CustomerRead.model_validate(customer)

    def get_customer(self, session: Session, customer_id: uuid.UUID) -> CustomerRead:
        return CustomerRead.model_validate(self.customer_repository.require(session, customer_id))

    def deactivate_customer(self, session: Session, customer_id: uuid.UUID) -> CustomerRead:
        customer = self.customer_repository.require(session, customer_id)
        customer.is_active = False
        session.commit()
        session.refresh(customer)
        return CustomerRead.model_validate(customer)

    def create_plan(self, session: Session, payload: PlanCreate) -> PlanRead:
        product_ids = [item.product_id for item in payload.products]
        if len(product_ids) != len(set(product_ids)):
            raise ValidationError("plan products must be unique")

        plan = SubscriptionPlan(**payload.model_dump(exclude={"products"}))
        plan.products = [SubscriptionPlanProduct(**item.model_dump()) for item in payload.products]
        session.add(plan)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise ConflictError("subscription plan already exists")
        return self.get_plan(session, plan.id)

    def list_plans(self, session: Session) -> list[PlanRead]:
        return [PlanRead.model_validate(plan) for plan in self.plan_repository.list_all(session)]

    def get_plan(self, session: Session, plan_id: uuid.UUID) -> PlanRead:
        plan = self.plan_repository.get_with_products(session, plan_id)
        if plan is None:
            raise NotFoundError("subscription plan not found")
        return PlanRead.model_validate(plan)

    def create_subscription(self, session: Session, payload: SubscriptionCreate) -> SubscriptionRead:
        customer = self.customer_repository.require(session, payload.customer_id)
        if not customer.is_active:
            raise ValidationError("customer is inactive")
        plan = self.plan_repository.require(session, payload.plan_id)
        if plan.status != "ACTIVE":
            raise ValidationError(f"plan {plan.code} is {plan.status}")

        subscription = self.subscription_repository.add(
            session,
            Subscription(customer_id=customer.id, plan_id=plan.id, status="ACTIVE", start_date=payload.start_date),
        )
        session.commit()
        subscription_id = subscription.id

        # First cycle starts with the subscription.
        cycle, _created = self.renewal.open_cycle(session, subscription_id, payload.start_date)
        subscription = self.subscription_repository.require(session, subscription_id)
        self._emit("subscription.created", subscription, cycle_id=str(cycle.id))
        logger.info(
            "subscription.created",
            extra={"subscription_id": str(subscription_id), "customer_id": str(customer.id), "cycle_id": str(cycle.id)},
        )
        return SubscriptionRead.model_validate(subscription)

    def list_subscriptions(self, session: Session, customer_id: uuid.UUID) -> list[SubscriptionRead]:
        self.customer_repository.require(session, customer_id)
        return [SubscriptionRead.model_validate(row) for row in self.subscription_repository.list_for_customer(session, customer_id)]

    def get_subscription(self, session: Session, subscription_id: uuid.UUID) -> SubscriptionRead:
        return SubscriptionRead.model_validate(self.subscription_repository.require(session, subscription_id))

    def suspend_subscription(
        self, session: Session, subscription_id: uuid.UUID, payload: SuspendSubscriptionRequest
    ) -> SubscriptionRead:
        subscription = self._transition(session, subscription_id, "SUSPENDED")
        self._emit("subscription.suspended", subscription, effective_date=payload.effective_date.isoformat())
        return SubscriptionRead.model_validate(subscription)

    def resume_subscription(
        self, session: Session, subscription_id: uuid.UUID, payload: ResumeSubscriptionRequest
    ) -> SubscriptionRead:
        subscription = self._transition(session, subscription_id, "ACTIVE")
        self._emit("subscription.resumed", subscription, effective_date=payload.effective_date.isoformat())
        return SubscriptionRead.model_validate(subscription)

    def cancel_subscription(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        payload: CancelSubscriptionRequest,
        *,
        actor_user_id: str = audit.SYSTEM_ACTOR,
    ) -> CancellationOrderRead:
        """Cancel the subscription and book the equipment pickup for the next business day."""
        subscription = self.subscription_repository.require(session, subscription_id)
        self._assert_transition(subscription.status, "CANCELLED")
        if payload.effective_date < subscription.start_date:
            raise ValidationError("cancellation precedes the subscription start")

        previous = subscription.status
        subscription.status = "CANCELLED"
        subscription.cancellation_date = payload.effective_date
        pickup = CancellationOrder(
            subscription_id=subscription.id,
            scheduled_collection_date=next_business_day(payload.effective_date),
            status="PENDING",
            notes=payload.reason,
        )
        session.add(pickup)
        session.commit()
        session.refresh(pickup)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="billing.subscription",
            entity_id=str(subscription_id),
            action="cancel",
            before={"status": previous},
            after={"status": "CANCELLED", "cancellation_order_id": str(pickup.id)},
        )
        self._emit(
            "subscription.cancelled",
            subscription,
            cancellation_order_id=str(pickup.id),
            scheduled_collection_date=pickup.scheduled_collection_date.isoformat(),
        )
        return CancellationOrderRead.model_validate(pickup)

    def _transition(self, session: Session, subscription_id: uuid.UUID, target: str) -> Subscription:
        subscription = self.subscription_repository.require(session, subscription_id)
        self._assert_transition(subscription.status, target)
        subscription.status = target
        session.commit()
        session.refresh(subscription)
        return subscription

    @staticmethod
    def _assert_transition(current: str, target: str) -> None:
        allowed = VALID_SUBSCRIPTION_TRANSITIONS.get(current, set())
        if target not in allowed:
            raise ValidationError(f"invalid subscription transition {current} -> {target}")

    @staticmethod
    def _emit(event_type: str, subscription: Subscription, **extra: str) -> None:
        events.publish(
            {
                "event_type": event_type,
                "subscription_id": str(subscription.id),
                "customer_id": str(subscription.customer_id),
                "status": subscription.status,
                **extra,
            }
        )


subscription_service = SubscriptionService()
