from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, selectinload

from app.business.collections.models import CollectionOrder
from app.business.routing.models import CancellationOrder, Driver, RouteSheet, RouteSheetDetail, Vehicle
from app.business.subscription.models import Subscription
from app.core.repository import BaseRepository


class DriverRepository(BaseRepository[Driver]):
    model = Driver
    resource = "driver"

    def list_active(self, session: Session, zone_id: uuid.UUID | None = None) -> list[Driver]:
        stmt = select(Driver).where(Driver.is_active.is_(True))
        if zone_id is not None:
            stmt = stmt.order_by(case((Driver.zone_id == zone_id, 0), else_=1), Driver.created_at, Driver.id)
        else:
            stmt = stmt.order_by(Driver.created_at, Driver.id)
        return list(session.scalars(stmt).all())


class VehicleRepository(BaseRepository[Vehicle]):
    model = Vehicle
    resource = "vehicle"

    def list_free_on(self, session: Session, day: date) -> list[Vehicle]:
        busy = select(RouteSheet.vehicle_id).where(RouteSheet.delivery_date == day)
        stmt = (
            select(Vehicle)
            .where(Vehicle.is_active.is_(True), Vehicle.id.not_in(busy))
            .order_by(Vehicle.code)
        )
        return list(session.scalars(stmt).all())


class RouteSheetRepository(BaseRepository[RouteSheet]):
    model = RouteSheet
    resource = "route sheet"

    def require_with_details(self, session: Session, route_sheet_id: uuid.UUID) -> RouteSheet:
        return self.require(session, route_sheet_id, options=(selectinload(RouteSheet.details),))

    def find_for_day(self, session: Session, day: date, zone_id: uuid.UUID | None = None) -> RouteSheet | None:
        stmt = select(RouteSheet).where(RouteSheet.delivery_date == day)
        if zone_id is not None:
            stmt = stmt.where(RouteSheet.zone_id == zone_id)
        return session.scalar(stmt.order_by(RouteSheet.created_at, RouteSheet.id).limit(1))

    def list_for_day(self, session: Session, day: date) -> list[RouteSheet]:
        stmt = (
            select(RouteSheet)
            .where(RouteSheet.delivery_date == day)
            .options(selectinload(RouteSheet.details))
            .order_by(RouteSheet.created_at, RouteSheet.id)
        )
        return list(session.scalars(stmt).all())


class RouteSheetDetailRepository(BaseRepository[RouteSheetDetail]):
    model = RouteSheetDetail
    resource = "route sheet detail"

    def require_for_reassignment(self, session: Session, detail_id: uuid.UUID) -> RouteSheetDetail:
        return self.require(
            session,
            detail_id,
            options=(
                selectinload(RouteSheetDetail.route_sheet),
                selectinload(RouteSheetDetail.order).selectinload(CollectionOrder.customer),
            ),
        )

    def reassignable_ids(self, session: Session, today: date, max_retries: int) -> list[uuid.UUID]:
        stmt = (
            select(RouteSheetDetail.id)
            .join(RouteSheet, RouteSheet.id == RouteSheetDetail.route_sheet_id)
            .where(
                RouteSheetDetail.delivery_status == "FAILED",
                RouteSheetDetail.reschedule_date.is_(None),
                RouteSheet.delivery_date < today,
                RouteSheetDetail.retry_count < max_retries,
            )
            .order_by(RouteSheet.delivery_date, RouteSheetDetail.created_at, RouteSheetDetail.id)
        )
        return list(session.scalars(stmt).all())

    def failure_stats(self, session: Session, today: date, max_retries: int) -> dict[str, int]:
        failed = RouteSheetDetail.delivery_status == "FAILED"
        not_rescheduled = RouteSheetDetail.reschedule_date.is_(None)
        stmt = (
            select(
                func.count(RouteSheetDetail.id),
                func.sum(
                    case(
                        (not_rescheduled & (RouteSheet.delivery_date < today) & (RouteSheetDetail.retry_count < max_retries), 1),
                        else_=0,
                    )
                ),
                func.sum(case((RouteSheetDetail.reschedule_date.is_not(None), 1), else_=0)),
                func.sum(case((not_rescheduled & (RouteSheetDetail.retry_count >= max_retries), 1), else_=0)),
                func.sum(case((RouteSheetDetail.rescheduled_on == today, 1), else_=0)),
            )
            .join(RouteSheet, RouteSheet.id == RouteSheetDetail.route_sheet_id)
            .where(failed)
        )
        total, pending, rescheduled, exhausted, today_count = session.execute(stmt).one()
        return {
            "pending_reassignment": int(pending or 0),
            "already_rescheduled": int(rescheduled or 0),
            "max_retries_reached": int(exhausted or 0),
            "rescheduled_today": int(today_count or 0),
            "total_failed": int(total or 0),
        }


class CancellationOrderRepository(BaseRepository[CancellationOrder]):
    model = CancellationOrder
    resource = "cancellation order"

    def require_with_customer(self, session: Session, cancellation_id: uuid.UUID) -> CancellationOrder:
        return self.require(
            session,
            cancellation_id,
            options=(selectinload(CancellationOrder.subscription).selectinload(Subscription.customer),),
        )

    def reassignable_ids(self, session: Session, today: date, max_retries: int) -> list[uuid.UUID]:
        stmt = (
            select(CancellationOrder.id)
            .where(
                CancellationOrder.status == "CANCELLED",
                CancellationOrder.scheduled_collection_date < today,
                CancellationOrder.rescheduled_count < max_retries,
            )
            .order_by(CancellationOrder.scheduled_collection_date, CancellationOrder.id)
        )
        return list(session.scalars(stmt).all())

    def failure_stats(self, session: Session, today: date, max_retries: int) -> dict[str, int]:
        cancelled = CancellationOrder.status == "CANCELLED"
        stmt = select(
            func.sum(case((cancelled, 1), else_=0)),
            func.sum(
                case(
                    (
                        cancelled
                        & (CancellationOrder.scheduled_collection_date < today)
                        & (CancellationOrder.rescheduled_count < max_retries),
                        1,
                    ),
                    else_=0,
                )
            ),
            func.sum(case((cancelled & (CancellationOrder.rescheduled_count >= max_retries), 1), else_=0)),
            func.sum(case((CancellationOrder.last_rescheduled_on == today, 1), else_=0)),
        )
        total, pending, exhausted, today_count = session.execute(stmt).one()
        return {
            "pending_reassignment": int(pending or 0),
            "max_retries_reached": int(exhausted or 0),
            "rescheduled_today": int(today_count or 0),
            "total_failed": int(total or 0),
        }

    def list_filtered(self, session: Session, *, status: str | None = None) -> list[CancellationOrder]:
        stmt = select(CancellationOrder)
        if status is not None:
            stmt = stmt.where(CancellationOrder.status == status)
        return list(session.scalars(stmt.order_by(CancellationOrder.scheduled_collection_date, CancellationOrder.id)).all())
