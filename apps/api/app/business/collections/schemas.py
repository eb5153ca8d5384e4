from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.business.schemas import BatchSummaryRead


OrderStatus = Literal[
    "PENDING",
    "CONFIRMED",
    "IN_PREPARATION",
    "IN_DELIVERY",
    "DELIVERED",
    "OVERDUE",
    "CANCELLED",
    "REFUNDED",
]
CollectionAction = Literal["created", "updated"]


class OrderCreate(BaseModel):
    customer_id: UUID
    subscription_id: UUID | None = None
    order_date: date
    scheduled_delivery_date: date | None = None
    status: OrderStatus = "PENDING"
    is_automated: bool = False
    notes: str | None = Field(default=None, max_length=2000)
    items: list[dict[str, Any]] = Field(default_factory=list)


class LinkedCycleRead(BaseModel):
    cycle_id: UUID
    subscription_id: UUID
    cycle_number: int
    payment_due_date: date
    pending_balance: Decimal
    payment_status: str


class CollectionOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    customer_id: UUID
    subscription_id: UUID | None
    order_date: date
    scheduled_delivery_date: date | None
    status: OrderStatus | str
    total_amount: Decimal
    paid_amount: Decimal
    is_automated: bool
    notes: str | None
    created_at: datetime
    billable_amount: Decimal = Decimal("0")
    cycles: list[LinkedCycleRead] = Field(default_factory=list)


class CollectionResult(BaseModel):
    cycle_id: UUID
    subscription_id: UUID
    customer_id: UUID
    customer_name: str
    plan_name: str
    payment_due_date: date
    pending_balance: Decimal
    order_created: bool
    order_id: UUID | None
    outcome: str
    notes: str | None = None


class AutomatedCollectionReport(BaseModel):
    target_date: date
    summary: BatchSummaryRead
    results: list[CollectionResult] = Field(default_factory=list)


class ManualCollectionRequest(BaseModel):
    customer_id: UUID
    cycle_ids: list[UUID] = Field(min_length=1)
    collection_date: date
    notes: str | None = Field(default=None, max_length=500)


class AddCollectionRequest(BaseModel):
    customer_id: UUID
    cycle_ids: list[UUID] = Field(min_length=1)


class ManualCollectionResult(BaseModel):
    success: bool
    order_id: UUID
    action: CollectionAction
    billable_amount: Decimal
    cycles_processed: int
    message: str


class PendingCycleRead(BaseModel):
    cycle_id: UUID
    subscription_id: UUID
    plan_name: str
    cycle_number: int
    payment_due_date: date
    total_amount: Decimal
    pending_balance: Decimal
    days_overdue: int
    payment_status: str
    billed_by_order_id: UUID | None = None


class ExistingOrderRead(BaseModel):
    order_id: UUID
    status: str
    order_date: date
    cycle_count: int
    billable_amount: Decimal


class UpcomingCollectionRead(BaseModel):
    cycle_id: UUID
    subscription_id: UUID
    customer_id: UUID
    customer_name: str
    payment_due_date: date
    collection_date: date
    pending_balance: Decimal


class RouteSheetCredit(BaseModel):
    cycle_number: int
    product_id: UUID
    planned: int
    delivered: int
    remaining: int


class CollectionRouteSheetRow(BaseModel):
    customer_id: UUID
    customer_name: str
    zone_id: UUID | None
    address: str | None
    order_id: UUID
    order_status: str
    amount: Decimal
    payment_due_date: date | None
    payment_status: str
    credits: list[RouteSheetCredit] = Field(default_factory=list)


class CollectionRouteSheet(BaseModel):
    delivery_date: date
    zone_id: UUID | None
    total_amount: Decimal
    rows: list[CollectionRouteSheetRow] = Field(default_factory=list)
