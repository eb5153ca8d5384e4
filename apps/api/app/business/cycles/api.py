from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.business.cycles.numbering import cycle_numbering
from app.business.cycles.payments import cycle_payment_service
from app.business.cycles.quota import quota_ledger
from app.business.cycles.schemas import (
    CycleRead,
    CycleStats,
    DeliveryAdjustmentRequest,
    PaymentCreate,
    PaymentRead,
    ProductCredit,
    QuotaValidation,
    QuotaValidationRequest,
    SemaphoreRead,
    SequenceIntegrityReport,
    SequenceRepairResult,
)
from app.business.cycles.service import cycle_service
from app.core.auth import AuthUser, get_current_user, require_operator
from app.core.database import get_db
from app.core.scheduler import get_today


router = APIRouter(prefix="/billing", tags=["billing-cycles"])


@router.get("/subscriptions/{subscription_id}/cycles", response_model=list[CycleRead])
def list_cycles(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[CycleRead]:
    return cycle_service.list_cycles(db, subscription_id)


@router.get("/subscriptions/{subscription_id}/cycles/current", response_model=CycleRead)
def current_cycle(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> CycleRead:
    return cycle_service.current_cycle(db, subscription_id, today)


@router.get("/subscriptions/{subscription_id}/cycles/integrity", response_model=SequenceIntegrityReport)
def verify_cycle_integrity(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> SequenceIntegrityReport:
    return cycle_numbering.verify_integrity(db, subscription_id)


@router.get("/subscriptions/{subscription_id}/cycles/stats", response_model=CycleStats)
def cycle_stats(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> CycleStats:
    return cycle_numbering.cycle_stats(db, subscription_id)


@router.post("/subscriptions/{subscription_id}/cycles/renumber", response_model=SequenceRepairResult)
def renumber_cycles(
    subscription_id: uuid.UUID,
    dry_run: bool = Query(default=True),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_operator),
) -> SequenceRepairResult:
    return cycle_numbering.renumber_sequence(db, subscription_id, dry_run=dry_run, actor_user_id=user.sub)


@router.post("/subscriptions/{subscription_id}/quota/validate", response_model=QuotaValidation)
def validate_quota(
    subscription_id: uuid.UUID,
    payload: QuotaValidationRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> QuotaValidation:
    return quota_ledger.validate(db, subscription_id, payload.items, today)


@router.get("/subscriptions/{subscription_id}/quota/credits", response_model=list[ProductCredit])
def available_credits(
    subscription_id: uuid.UUID,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> list[ProductCredit]:
    return quota_ledger.available_credits(db, subscription_id, today)


@router.post("/subscriptions/{subscription_id}/quota/deliveries", response_model=list[ProductCredit])
def apply_delivery(
    subscription_id: uuid.UUID,
    payload: DeliveryAdjustmentRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(require_operator),
) -> list[ProductCredit]:
    return quota_ledger.apply_delivery(db, subscription_id, payload.items, today)


@router.post("/subscriptions/{subscription_id}/quota/returns", response_model=list[ProductCredit])
def reverse_delivery(
    subscription_id: uuid.UUID,
    payload: DeliveryAdjustmentRequest,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(require_operator),
) -> list[ProductCredit]:
    return quota_ledger.reverse_delivery(db, subscription_id, payload.items, today, cycle_id=payload.cycle_id)


@router.get("/cycles/{cycle_id}", response_model=CycleRead)
def get_cycle(
    cycle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> CycleRead:
    return cycle_service.get_cycle(db, cycle_id)


@router.get("/cycles/{cycle_id}/payments", response_model=list[PaymentRead])
def list_payments(
    cycle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[PaymentRead]:
    return cycle_payment_service.list_payments(db, cycle_id)


@router.post("/cycles/{cycle_id}/payments", response_model=CycleRead, status_code=status.HTTP_201_CREATED)
def apply_payment(
    cycle_id: uuid.UUID,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CycleRead:
    return cycle_payment_service.apply_payment(db, cycle_id, payload)


@router.post("/cycles/{cycle_id}/recalculate", response_model=CycleRead)
def recalculate_balances(
    cycle_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CycleRead:
    return cycle_payment_service.recalculate_balances(db, cycle_id)


@router.get("/customers/{customer_id}/payment-semaphore", response_model=SemaphoreRead)
def payment_semaphore(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> SemaphoreRead:
    return cycle_payment_service.customer_payment_semaphore(db, customer_id, today)
