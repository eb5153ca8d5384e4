from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app.business.collections.repository import OrderRepository
from app.business.collections.service import CollectionOrderService
from app.business.routing.directory import RouteDirectory
from app.business.routing.models import Driver, RouteSheetDetail, Vehicle
from app.business.routing.repository import (
    CancellationOrderRepository,
    DriverRepository,
    RouteSheetDetailRepository,
    RouteSheetRepository,
    VehicleRepository,
)
from app.business.routing.schemas import (
    CancellationOrderRead,
    DriverCreate,
    DriverRead,
    RouteSheetCreate,
    RouteSheetDetailCreate,
    RouteSheetDetailRead,
    RouteSheetRead,
    VehicleCreate,
    VehicleRead,
)
from app.core.errors import ValidationError


VALID_DELIVERY_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"IN_TRANSIT", "DELIVERED", "FAILED", "SKIPPED"},
    "IN_TRANSIT": {"DELIVERED", "FAILED"},
    "SKIPPED": {"PENDING"},
    "DELIVERED": set(),
    "FAILED": set(),
}

VALID_CANCELLATION_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"SCHEDULED", "CANCELLED"},
    "SCHEDULED": {"IN_PROGRESS", "CANCELLED", "RESCHEDULED"},
    "IN_PROGRESS": {"COMPLETED", "CANCELLED"},
    "CANCELLED": {"SCHEDULED"},
    "RESCHEDULED": {"SCHEDULED"},
    "COMPLETED": set(),
}


@dataclass(slots=True)
class RoutingService:
    directory: RouteDirectory = field(default_factory=RouteDirectory)
    orders: CollectionOrderService = field(default_factory=CollectionOrderService)
    driver_repository: DriverRepository = DriverRepository()
    vehicle_repository: VehicleRepository = VehicleRepository()
    route_sheet_repository: RouteSheetRepository = RouteSheetRepository()
    detail_repository: RouteSheetDetailRepository = RouteSheetDetailRepository()
    cancellation_repository: CancellationOrderRepository = CancellationOrderRepository()
    order_repository: OrderRepository = OrderRepository()

    def create_driver(self, session: Session, payload: DriverCreate) -> DriverRead:
        driver = self.driver_repository.add(session, Driver(name=payload.name, zone_id=payload.zone_id))
        session.commit()
        session.refresh(driver)
        return DriverRead.model_validate(driver)

    def create_vehicle(self, session: Session, payload: VehicleCreate) -> VehicleRead:
        vehicle = self.vehicle_repository.add(session, Vehicle(code=payload.code))
        session.commit()
        session.refresh(vehicle)
        return VehicleRead.model_validate(vehicle)

    def open_route_sheet(self, session: Session, payload: RouteSheetCreate) -> RouteSheetRead:
        sheet = self.directory.get_or_create_route_sheet(session, payload.delivery_date, payload.zone_id)
        session.commit()
        return self.get_route_sheet(session, sheet.id)

    def get_route_sheet(self, session: Session, route_sheet_id: uuid.UUID) -> RouteSheetRead:
        return RouteSheetRead.model_validate(self.route_sheet_repository.require_with_details(session, route_sheet_id))

    def list_route_sheets(self, session: Session, day: date) -> list[RouteSheetRead]:
        return [RouteSheetRead.model_validate(sheet) for sheet in self.route_sheet_repository.list_for_day(session, day)]

    def add_detail(self, session: Session, route_sheet_id: uuid.UUID, payload: RouteSheetDetailCreate) -> RouteSheetDetailRead:
        sheet = self.route_sheet_repository.require(session, route_sheet_id)
        order = self.order_repository.require(session, payload.order_id)
        if order.status in ("CANCELLED", "REFUNDED", "DELIVERED"):
            raise ValidationError(f"order is {order.status} and cannot be routed")
        detail = self.detail_repository.add(
            session,
            RouteSheetDetail(route_sheet_id=sheet.id, order_id=order.id, delivery_status="PENDING", comments=payload.comments),
        )
        order.scheduled_delivery_date = sheet.delivery_date
        session.commit()
        session.refresh(detail)
        return RouteSheetDetailRead.model_validate(detail)

    def update_delivery_status(
        self,
        session: Session,
        detail_id: uuid.UUID,
        status: str,
        *,
        comments: str | None = None,
    ) -> RouteSheetDetailRead:
        detail = self.detail_repository.require_for_reassignment(session, detail_id)
        allowed = VALID_DELIVERY_TRANSITIONS.get(detail.delivery_status, set())
        if status not in allowed:
            raise ValidationError(f"invalid delivery status transition {detail.delivery_status} -> {status}")

        detail.delivery_status = status
        if comments:
            detail.comments = f"{detail.comments} | {comments}" if detail.comments else comments
        if status == "IN_TRANSIT" and detail.order.status in ("PENDING", "CONFIRMED", "IN_PREPARATION", "OVERDUE"):
            self.orders.transition_order(detail.order, "IN_DELIVERY")
        elif status == "DELIVERED" and detail.order.status != "DELIVERED":
            if detail.order.status != "IN_DELIVERY":
                self.orders.transition_order(detail.order, "IN_DELIVERY")
            self.orders.transition_order(detail.order, "DELIVERED")
        session.commit()
        session.refresh(detail)
        return RouteSheetDetailRead.model_validate(detail)

    def update_cancellation_status(self, session: Session, cancellation_id: uuid.UUID, status: str) -> CancellationOrderRead:
        task = self.cancellation_repository.require(session, cancellation_id)
        allowed = VALID_CANCELLATION_TRANSITIONS.get(task.status, set())
        if status not in allowed:
            raise ValidationError(f"invalid pickup status transition {task.status} -> {status}")
        task.status = status
        session.commit()
        session.refresh(task)
        return CancellationOrderRead.model_validate(task)

    def list_cancellations(self, session: Session, *, status: str | None = None) -> list[CancellationOrderRead]:
        return [CancellationOrderRead.model_validate(row) for row in self.cancellation_repository.list_filtered(session, status=status)]


routing_service = RoutingService()
