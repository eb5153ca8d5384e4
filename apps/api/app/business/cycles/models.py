from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base

if TYPE_CHECKING:
    from app.business.subscription.models import Subscription


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionCycle(Base):
    __tablename__ = "subscription_cycle"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    subscription_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription.id"), nullable=False)
    cycle_number: Mapped[int] = mapped_column(Integer, nullable=False)
    cycle_start: Mapped[date] = mapped_column(Date(), nullable=False)
    cycle_end: Mapped[date] = mapped_column(Date(), nullable=False)
    payment_due_date: Mapped[date] = mapped_column(Date(), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    pending_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    credit_balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    payment_status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", server_default="PENDING")
    is_overdue: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    late_fee_applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    late_fee_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 4), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    subscription: Mapped[Subscription] = relationship("app.business.subscription.models.Subscription", back_populates="cycles")
    details: Mapped[list[SubscriptionCycleDetail]] = relationship(
        "app.business.cycles.models.SubscriptionCycleDetail",
        back_populates="cycle",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    payments: Mapped[list[CyclePayment]] = relationship(
        "app.business.cycles.models.CyclePayment",
        back_populates="cycle",
        order_by="CyclePayment.payment_date",
    )

    __table_args__ = (
        UniqueConstraint("subscription_id", "cycle_number", name="uq_subscription_cycle_number"),
        CheckConstraint("cycle_end >= cycle_start", name="ck_subscription_cycle_window"),
        Index("ix_subscription_cycle_window", "subscription_id", "cycle_start", "cycle_end"),
        Index("ix_subscription_cycle_due", "payment_due_date"),
    )


class SubscriptionCycleDetail(Base):
    __tablename__ = "subscription_cycle_detail"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription_cycle.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    planned_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    delivered_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    remaining_balance: Mapped[int] = mapped_column(Integer, nullable=False)

    cycle: Mapped[SubscriptionCycle] = relationship("app.business.cycles.models.SubscriptionCycle", back_populates="details")

    __table_args__ = (
        UniqueConstraint("cycle_id", "product_id", name="uq_subscription_cycle_detail_product"),
        CheckConstraint("delivered_quantity >= 0", name="ck_subscription_cycle_detail_delivered_nonnegative"),
        CheckConstraint("remaining_balance >= 0", name="ck_subscription_cycle_detail_remaining_nonnegative"),
    )


class CyclePayment(Base):
    __tablename__ = "cycle_payment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    cycle_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), ForeignKey("subscription_cycle.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date(), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(32), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(128), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    cycle: Mapped[SubscriptionCycle] = relationship("app.business.cycles.models.SubscriptionCycle", back_populates="payments")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cycle_payment_amount_positive"),
        Index("ix_cycle_payment_cycle", "cycle_id", "payment_date"),
    )
