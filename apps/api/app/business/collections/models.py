from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Numeric, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.business.cycles.models import SubscriptionCycle
    from app.business.subscription.models import Customer


OPEN_ORDER_STATUSES = ("PENDING", "CONFIRMED", "IN_PREPARATION")
TERMINAL_ORDER_STATUSES = ("DELIVERED", "CANCELLED", "REFUNDED")

_OPEN_STATUS_PREDICATE = text("status IN ('PENDING', 'CONFIRMED', 'IN_PREPARATION')")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectionOrder(Base):
    __tablename__ = "collection_order"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("customer.id"), nullable=False)
    subscription_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription.id"), nullable=True)
    order_date: Mapped[date] = mapped_column(Date(), nullable=False)
    scheduled_delivery_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", server_default="PENDING")
    order_type: Mapped[str] = mapped_column(String(32), nullable=False, default="COLLECTION", server_default="COLLECTION")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    is_automated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer: Mapped[Customer] = relationship("app.business.subscription.models.Customer")
    cycle_links: Mapped[list[CollectionOrderCycle]] = relationship(
        "app.business.collections.models.CollectionOrderCycle",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "uq_collection_order_open_customer_day",
            "customer_id",
            "order_date",
            unique=True,
            postgresql_where=_OPEN_STATUS_PREDICATE,
            sqlite_where=_OPEN_STATUS_PREDICATE,
        ),
        Index("ix_collection_order_date_status", "order_date", "status"),
    )


class CollectionOrderCycle(Base):
    __tablename__ = "collection_order_cycle"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("collection_order.id", ondelete="CASCADE"), nullable=False)
    cycle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription_cycle.id"), nullable=False, unique=True)
    linked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    order: Mapped[CollectionOrder] = relationship("app.business.collections.models.CollectionOrder", back_populates="cycle_links")
    cycle: Mapped[SubscriptionCycle] = relationship("app.business.cycles.models.SubscriptionCycle")

    __table_args__ = (
        Index("ix_collection_order_cycle_order", "order_id"),
    )
