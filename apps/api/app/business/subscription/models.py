from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.business.cycles.models import SubscriptionCycle


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Customer(Base):
    __tablename__ = "customer"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    zone_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    address: Mapped[str | None] = mapped_column(String(512), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    subscriptions: Mapped[list[Subscription]] = relationship(
        "app.business.subscription.models.Subscription",
        back_populates="customer",
    )

    __table_args__ = (
        Index("ix_customer_name", "name"),
        Index("ix_customer_zone", "zone_id"),
    )


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plan"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    cycle_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30, server_default="30")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ACTIVE", server_default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    products: Mapped[list[SubscriptionPlanProduct]] = relationship(
        "app.business.subscription.models.SubscriptionPlanProduct",
        back_populates="plan",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="SubscriptionPlanProduct.created_at",
    )


class SubscriptionPlanProduct(Base):
    __tablename__ = "subscription_plan_product"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription_plan.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    plan: Mapped[SubscriptionPlan] = relationship("app.business.subscription.models.SubscriptionPlan", back_populates="products")

    __table_args__ = (
        UniqueConstraint("plan_id", "product_id", name="uq_subscription_plan_product"),
        Index("ix_subscription_plan_product_plan", "plan_id"),
    )


class Subscription(Base):
    __tablename__ = "subscription"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    customer_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("customer.id"), nullable=False)
    plan_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription_plan.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="ACTIVE", server_default="ACTIVE")
    start_date: Mapped[date] = mapped_column(Date(), nullable=False)
    cancellation_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    customer: Mapped[Customer] = relationship("app.business.subscription.models.Customer", back_populates="subscriptions")
    plan: Mapped[SubscriptionPlan] = relationship("app.business.subscription.models.SubscriptionPlan")
    cycles: Mapped[list[SubscriptionCycle]] = relationship(
        "app.business.cycles.models.SubscriptionCycle",
        back_populates="subscription",
        order_by="SubscriptionCycle.cycle_number",
    )

    __table_args__ = (
        Index("ix_subscription_customer", "customer_id"),
        Index("ix_subscription_status", "status"),
    )
