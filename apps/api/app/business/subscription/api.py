from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.business.routing.schemas import CancellationOrderRead
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
from app.business.subscription.service import subscription_service
from app.core.auth import AuthUser, get_current_user, require_operator
from app.core.database import get_db


router = APIRouter(prefix="/billing", tags=["billing-subscriptions"])


@router.post("/customers", response_model=CustomerRead, status_code=status.HTTP_201_CREATED)
def create_customer(
    payload: CustomerCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CustomerRead:
    return subscription_service.create_customer(db, payload)


@router.get("/customers/{customer_id}", response_model=CustomerRead)
def get_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> CustomerRead:
    return subscription_service.get_customer(db, customer_id)


@router.post("/customers/{customer_id}/deactivate", response_model=CustomerRead)
def deactivate_customer(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CustomerRead:
    return subscription_service.deactivate_customer(db, customer_id)


@router.get("/customers/{customer_id}/subscriptions", response_model=list[SubscriptionRead])
def list_customer_subscriptions(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[SubscriptionRead]:
    return subscription_service.list_subscriptions(db, customer_id)


@router.post("/plans", response_model=PlanRead, status_code=status.HTTP_201_CREATED)
def create_plan(
    payload: PlanCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> PlanRead:
    return subscription_service.create_plan(db, payload)


@router.get("/plans", response_model=list[PlanRead])
def list_plans(
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[PlanRead]:
    return subscription_service.list_plans(db)


@router.get("/plans/{plan_id}", response_model=PlanRead)
def get_plan(
    plan_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> PlanRead:
    return subscription_service.get_plan(db, plan_id)


@router.post("/subscriptions", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: SubscriptionCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> SubscriptionRead:
    return subscription_service.create_subscription(db, payload)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> SubscriptionRead:
    return subscription_service.get_subscription(db, subscription_id)


@router.post("/subscriptions/{subscription_id}/suspend", response_model=SubscriptionRead)
def suspend_subscription(
    subscription_id: uuid.UUID,
    payload: SuspendSubscriptionRequest,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> SubscriptionRead:
    return subscription_service.suspend_subscription(db, subscription_id, payload)


@router.post("/subscriptions/{subscription_id}/resume", response_model=SubscriptionRead)
def resume_subscription(
    subscription_id: uuid.UUID,
    payload: ResumeSubscriptionRequest,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> SubscriptionRead:
    return subscription_service.resume_subscription(db, subscription_id, payload)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=CancellationOrderRead)
def cancel_subscription(
    subscription_id: uuid.UUID,
    payload: CancelSubscriptionRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_operator),
) -> CancellationOrderRead:
    return subscription_service.cancel_subscription(db, subscription_id, payload, actor_user_id=user.sub)
