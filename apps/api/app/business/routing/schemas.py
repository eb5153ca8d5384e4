from __future__ import annotations

from datetime import date, datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


DeliveryStatus = Literal["PENDING", "IN_TRANSIT", "DELIVERED", "FAILED", "SKIPPED"]
CancellationStatus = Literal["PENDING", "SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED", "RESCHEDULED"]


class DriverCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    zone_id: UUID | None = None


class DriverRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    zone_id: UUID | None
    is_active: bool


class VehicleCreate(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class VehicleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    is_active: bool


class DriverVehicle(BaseModel):
    driver_id: UUID
    vehicle_id: UUID


class RouteSheetDetailRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    route_sheet_id: UUID
    order_id: UUID
    delivery_status: DeliveryStatus | str
    reschedule_date: date | None
    rescheduled_on: date | None
    retry_count: int
    comments: str | None


class RouteSheetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    driver_id: UUID
    vehicle_id: UUID
    delivery_date: date
    zone_id: UUID | None
    notes: str | None
    created_at: datetime
    details: list[RouteSheetDetailRead] = Field(default_factory=list)


class RouteSheetCreate(BaseModel):
    delivery_date: date
    zone_id: UUID | None = None


class RouteSheetDetailCreate(BaseModel):
    order_id: UUID
    comments: str | None = Field(default=None, max_length=1024)


class DeliveryStatusUpdate(BaseModel):
    status: DeliveryStatus
    comments: str | None = Field(default=None, max_length=1024)


class CancellationOrderRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    subscription_id: UUID
    scheduled_collection_date: date
    status: CancellationStatus | str
    route_sheet_id: UUID | None
    rescheduled_count: int
    last_rescheduled_on: date | None
    notes: str | None


class CancellationFailureRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class CancellationStatusUpdate(BaseModel):
    status: CancellationStatus


class DeliveryReassignmentStats(BaseModel):
    pending_reassignment: int
    already_rescheduled: int
    max_retries_reached: int
    rescheduled_today: int
    total_failed: int


class CancellationReassignmentStats(BaseModel):
    pending_reassignment: int
    max_retries_reached: int
    rescheduled_today: int
    total_failed: int
