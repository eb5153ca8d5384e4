from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.business.collections.models import CollectionOrder
    from app.business.subscription.models import Subscription


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Driver(Base):
    __tablename__ = "driver"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    zone_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class Vehicle(Base):
    __tablename__ = "vehicle"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class RouteSheet(Base):
    __tablename__ = "route_sheet"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    driver_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("driver.id"), nullable=False)
    vehicle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("vehicle.id"), nullable=False)
    delivery_date: Mapped[date] = mapped_column(Date(), nullable=False)
    zone_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    details: Mapped[list[RouteSheetDetail]] = relationship(
        "app.business.routing.models.RouteSheetDetail",
        back_populates="route_sheet",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_route_sheet_date_zone", "delivery_date", "zone_id"),
    )


class RouteSheetDetail(Base):
    __tablename__ = "route_sheet_detail"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    route_sheet_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("route_sheet.id", ondelete="CASCADE"), nullable=False)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("collection_order.id"), nullable=False)
    delivery_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", server_default="PENDING")
    reschedule_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    rescheduled_on: Mapped[date | None] = mapped_column(Date(), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    comments: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    route_sheet: Mapped[RouteSheet] = relationship("app.business.routing.models.RouteSheet", back_populates="details")
    order: Mapped[CollectionOrder] = relationship("app.business.collections.models.CollectionOrder")

    __table_args__ = (
        CheckConstraint("retry_count >= 0", name="ck_route_sheet_detail_retry_nonnegative"),
        Index("ix_route_sheet_detail_status", "delivery_status", "reschedule_date"),
    )


class CancellationOrder(Base):
    __tablename__ = "cancellation_order"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription.id"), nullable=False)
    scheduled_collection_date: Mapped[date] = mapped_column(Date(), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", server_default="PENDING")
    route_sheet_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("route_sheet.id"), nullable=True)
    rescheduled_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_rescheduled_on: Mapped[date | None] = mapped_column(Date(), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    subscription: Mapped[Subscription] = relationship("app.business.subscription.models.Subscription")
    route_sheet: Mapped[RouteSheet | None] = relationship("app.business.routing.models.RouteSheet")

    __table_args__ = (
        CheckConstraint("rescheduled_count >= 0", name="ck_cancellation_order_rescheduled_nonnegative"),
        Index("ix_cancellation_order_status_date", "status", "scheduled_collection_date"),
    )
