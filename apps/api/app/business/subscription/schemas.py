from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


PlanStatus = Literal["ACTIVE", "INACTIVE"]
SubscriptionStatus = Literal["ACTIVE", "SUSPENDED", "CANCELLED", "EXPIRED"]


class CustomerCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    zone_id: UUID | None = None
    address: str | None = Field(default=None, max_length=512)


class CustomerRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    zone_id: UUID | None
    address: str | None
    is_active: bool
    created_at: datetime


class PlanProductCreate(BaseModel):
    product_id: UUID
    product_name: str | None = None
    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=Decimal("0"))


class PlanProductRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    product_id: UUID
    product_name: str | None
    quantity: int
    unit_price: Decimal


class PlanCreate(BaseModel):
    name: str = Field(min_length=1)
    code: str = Field(min_length=1)
    price: Decimal = Field(default=Decimal("0"), ge=Decimal("0"))
    cycle_days: int = Field(default=30, ge=1, le=366)
    status: PlanStatus = "ACTIVE"
    products: list[PlanProductCreate] = Field(default_factory=list)


class PlanRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    code: str
    price: Decimal
    cycle_days: int
    status: PlanStatus | str
    created_at: datetime
    products: list[PlanProductRead] = Field(default_factory=list)


class SubscriptionCreate(BaseModel):
    customer_id: UUID
    plan_id: UUID
    start_date: date


class SubscriptionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    plan_id: UUID
    status: SubscriptionStatus | str
    start_date: date
    cancellation_date: date | None
    created_at: datetime
    updated_at: datetime


class SuspendSubscriptionRequest(BaseModel):
    effective_date: date


class ResumeSubscriptionRequest(BaseModel):
    effective_date: date


class CancelSubscriptionRequest(BaseModel):
    effective_date: date
    reason: str | None = Field(default=None, max_length=500)
