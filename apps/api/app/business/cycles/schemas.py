from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


PaymentStatus = Literal["PENDING", "PARTIAL", "PAID", "OVERDUE", "CREDITED"]
PaymentMethod = Literal["CASH", "TRANSFER", "CARD", "CHECK", "OTHER"]
PaymentSemaphore = Literal["NONE", "GREEN", "YELLOW", "RED"]


class CycleDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    planned_quantity: int
    delivered_quantity: int
    remaining_balance: int


class CycleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    cycle_number: int
    cycle_start: date
    cycle_end: date
    payment_due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    pending_balance: Decimal
    credit_balance: Decimal
    payment_status: PaymentStatus | str
    is_overdue: bool
    late_fee_applied: bool
    late_fee_percentage: Decimal | None
    created_at: datetime
    details: list[CycleDetailRead] = Field(default_factory=list)


class SequenceChange(BaseModel):
    cycle_id: UUID
    old_number: int
    new_number: int


class SequenceRepairResult(BaseModel):
    subscription_id: UUID
    dry_run: bool
    changes: list[SequenceChange] = Field(default_factory=list)


class SequenceIntegrityReport(BaseModel):
    subscription_id: UUID
    is_valid: bool
    starts_at_one: bool
    gaps: list[int] = Field(default_factory=list)
    duplicates: list[int] = Field(default_factory=list)
    expected_next_number: int


class CycleStats(BaseModel):
    subscription_id: UUID
    total_cycles: int
    paid_cycles: int
    pending_cycles: int
    overdue_cycles: int
    total_amount: Decimal
    paid_amount: Decimal
    pending_amount: Decimal
    current_cycle_number: int | None


class QuotaItemRequest(BaseModel):
    product_id: UUID
    quantity: int


class QuotaValidationRequest(BaseModel):
    items: list[QuotaItemRequest] = Field(min_length=1)


class QuotaItemResult(BaseModel):
    product_id: UUID
    planned: int
    delivered: int
    remaining: int
    requested: int
    covered_by_subscription: int
    additional_quantity: int


class LateFeeInfo(BaseModel):
    is_overdue: bool
    late_fee_percentage: Decimal | None
    late_fee_applied: bool
    payment_due_date: date


class QuotaValidation(BaseModel):
    subscription_id: UUID
    cycle_id: UUID
    items: list[QuotaItemResult] = Field(default_factory=list)
    has_additional_charges: bool
    late_fee_info: LateFeeInfo


class ProductCredit(BaseModel):
    product_id: UUID
    planned_quantity: int
    delivered_quantity: int
    remaining_balance: int


class DeliveryAdjustmentRequest(BaseModel):
    items: list[QuotaItemRequest] = Field(min_length=1)
    cycle_id: UUID | None = None


class PaymentCreate(BaseModel):
    amount: Decimal = Field(gt=Decimal("0"))
    payment_date: date
    payment_method: PaymentMethod = "CASH"
    reference: str | None = Field(default=None, max_length=128)


class PaymentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    cycle_id: UUID
    amount: Decimal
    payment_date: date
    payment_method: str
    reference: str | None
    created_at: datetime


class SemaphoreRead(BaseModel):
    customer_id: UUID
    semaphore: PaymentSemaphore
    max_days_overdue: int
    pending_cycles: int

