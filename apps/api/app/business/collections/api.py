from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.business.collections.automated import automated_collection_generator
from app.business.collections.edit import order_collection_edit_service
from app.business.collections.manual import manual_collection_service
from app.business.collections.route_sheet import build_collection_route_sheet
from app.business.collections.schemas import (
    AddCollectionRequest,
    AutomatedCollectionReport,
    CollectionOrderRead,
    CollectionRouteSheet,
    ExistingOrderRead,
    ManualCollectionRequest,
    ManualCollectionResult,
    OrderStatus,
    PendingCycleRead,
    UpcomingCollectionRead,
)
from app.business.collections.service import collection_order_service
from app.core.auth import AuthUser, get_current_user, require_operator
from app.core.database import get_db
from app.core.scheduler import get_today


router = APIRouter(prefix="/billing/collections", tags=["billing-collections"])


@router.post("/automated/run", response_model=AutomatedCollectionReport)
def run_automated_collection(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(require_operator),
) -> AutomatedCollectionReport:
    return automated_collection_generator.generate(db, today)


@router.post("/automated/backfill", response_model=AutomatedCollectionReport)
def backfill_collections(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(require_operator),
) -> AutomatedCollectionReport:
    return automated_collection_generator.backfill_missed(db, today)


@router.get("/upcoming", response_model=list[UpcomingCollectionRead])
def upcoming_collections(
    days: int = Query(default=7, ge=1, le=90),
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> list[UpcomingCollectionRead]:
    return collection_order_service.upcoming_collections(db, today, days)


@router.post("/manual", response_model=ManualCollectionResult, status_code=status.HTTP_201_CREATED)
def generate_manual_collection(
    payload: ManualCollectionRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_operator),
) -> ManualCollectionResult:
    return manual_collection_service.generate(
        db,
        payload.customer_id,
        payload.cycle_ids,
        payload.collection_date,
        notes=payload.notes,
        actor_user_id=user.sub,
    )


@router.get("/customers/{customer_id}/pending-cycles", response_model=list[PendingCycleRead])
def customer_pending_cycles(
    customer_id: uuid.UUID,
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> list[PendingCycleRead]:
    return manual_collection_service.customer_pending_cycles(db, customer_id, today)


@router.get("/customers/{customer_id}/existing-order", response_model=ExistingOrderRead | None)
def existing_order_for_date(
    customer_id: uuid.UUID,
    collection_date: date = Query(),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> ExistingOrderRead | None:
    return order_collection_edit_service.find_existing_order_for_date(db, customer_id, collection_date)


@router.get("/orders", response_model=list[CollectionOrderRead])
def list_orders(
    customer_id: uuid.UUID | None = Query(default=None),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    order_date: date | None = Query(default=None),
    is_automated: bool | None = Query(default=None),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[CollectionOrderRead]:
    return collection_order_service.list_orders(
        db,
        customer_id=customer_id,
        status=order_status,
        order_date=order_date,
        is_automated=is_automated,
    )


@router.get("/orders/{order_id}", response_model=CollectionOrderRead)
def get_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> CollectionOrderRead:
    return collection_order_service.get_order(db, order_id)


@router.post("/orders/{order_id}/cycles", response_model=ManualCollectionResult)
def add_cycles_to_order(
    order_id: uuid.UUID,
    payload: AddCollectionRequest,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_operator),
) -> ManualCollectionResult:
    return order_collection_edit_service.add_collection_to_existing_order(
        db,
        order_id,
        payload.customer_id,
        payload.cycle_ids,
        actor_user_id=user.sub,
    )


@router.post("/orders/{order_id}/cancel", response_model=CollectionOrderRead)
def cancel_order(
    order_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(require_operator),
) -> CollectionOrderRead:
    return collection_order_service.cancel_order(db, order_id, actor_user_id=user.sub)


@router.get("/route-sheet", response_model=CollectionRouteSheet)
def collection_route_sheet(
    delivery_date: date = Query(),
    zone_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> CollectionRouteSheet:
    return build_collection_route_sheet(db, delivery_date, zone_id)
