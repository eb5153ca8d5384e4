from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.business.routing.reassignment import cancellation_reassignment, delivery_reassignment
from app.business.routing.schemas import (
    CancellationFailureRequest,
    CancellationOrderRead,
    CancellationReassignmentStats,
    CancellationStatus,
    CancellationStatusUpdate,
    DeliveryReassignmentStats,
    DeliveryStatusUpdate,
    DriverCreate,
    DriverRead,
    RouteSheetCreate,
    RouteSheetDetailCreate,
    RouteSheetDetailRead,
    RouteSheetRead,
    VehicleCreate,
    VehicleRead,
)
from app.business.routing.service import routing_service
from app.core.auth import AuthUser, get_current_user, require_operator
from app.core.database import get_db
from app.core.scheduler import get_today


router = APIRouter(prefix="/billing/routing", tags=["billing-routing"])


@router.post("/drivers", response_model=DriverRead, status_code=status.HTTP_201_CREATED)
def create_driver(
    payload: DriverCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> DriverRead:
    return routing_service.create_driver(db, payload)


@router.post("/vehicles", response_model=VehicleRead, status_code=status.HTTP_201_CREATED)
def create_vehicle(
    payload: VehicleCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> VehicleRead:
    return routing_service.create_vehicle(db, payload)


@router.post("/route-sheets", response_model=RouteSheetRead, status_code=status.HTTP_201_CREATED)
def open_route_sheet(
    payload: RouteSheetCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> RouteSheetRead:
    return routing_service.open_route_sheet(db, payload)


@router.get("/route-sheets", response_model=list[RouteSheetRead])
def list_route_sheets(
    delivery_date: date = Query(),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[RouteSheetRead]:
    return routing_service.list_route_sheets(db, delivery_date)


@router.get("/route-sheets/{route_sheet_id}", response_model=RouteSheetRead)
def get_route_sheet(
    route_sheet_id: uuid.UUID,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> RouteSheetRead:
    return routing_service.get_route_sheet(db, route_sheet_id)


@router.post("/route-sheets/{route_sheet_id}/details", response_model=RouteSheetDetailRead, status_code=status.HTTP_201_CREATED)
def add_route_sheet_detail(
    route_sheet_id: uuid.UUID,
    payload: RouteSheetDetailCreate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> RouteSheetDetailRead:
    return routing_service.add_detail(db, route_sheet_id, payload)


@router.post("/details/{detail_id}/status", response_model=RouteSheetDetailRead)
def update_delivery_status(
    detail_id: uuid.UUID,
    payload: DeliveryStatusUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> RouteSheetDetailRead:
    return routing_service.update_delivery_status(db, detail_id, payload.status, comments=payload.comments)


@router.get("/reassignment/deliveries/stats", response_model=DeliveryReassignmentStats)
def delivery_reassignment_stats(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> DeliveryReassignmentStats:
    return delivery_reassignment.stats(db, today)


@router.get("/cancellations", response_model=list[CancellationOrderRead])
def list_cancellations(
    cancellation_status: CancellationStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(get_current_user),
) -> list[CancellationOrderRead]:
    return routing_service.list_cancellations(db, status=cancellation_status)


@router.post("/cancellations/{cancellation_id}/status", response_model=CancellationOrderRead)
def update_cancellation_status(
    cancellation_id: uuid.UUID,
    payload: CancellationStatusUpdate,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CancellationOrderRead:
    return routing_service.update_cancellation_status(db, cancellation_id, payload.status)


@router.post("/cancellations/{cancellation_id}/fail", response_model=CancellationOrderRead)
def mark_cancellation_failed(
    cancellation_id: uuid.UUID,
    payload: CancellationFailureRequest,
    db: Session = Depends(get_db),
    _user: AuthUser = Depends(require_operator),
) -> CancellationOrderRead:
    return cancellation_reassignment.mark_cancellation_failed(db, cancellation_id, payload.reason)


@router.get("/reassignment/cancellations/stats", response_model=CancellationReassignmentStats)
def cancellation_reassignment_stats(
    db: Session = Depends(get_db),
    today: date = Depends(get_today),
    _user: AuthUser = Depends(get_current_user),
) -> CancellationReassignmentStats:
    return cancellation_reassignment.stats(db, today)
