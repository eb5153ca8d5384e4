from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from app.business.collections.models import CollectionOrder
from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import OrderCreate
from app.business.subscription.repository import CustomerRepository
from app.core.errors import OrderValidationError


VALID_ORDER_TRANSITIONS: dict[str, set[str]] = {
    "PENDING": {"CONFIRMED", "IN_PREPARATION", "IN_DELIVERY", "OVERDUE", "CANCELLED"},
    "CONFIRMED": {"IN_PREPARATION", "IN_DELIVERY", "OVERDUE", "CANCELLED"},
    "IN_PREPARATION": {"IN_DELIVERY", "OVERDUE", "CANCELLED"},
    "IN_DELIVERY": {"DELIVERED", "PENDING", "OVERDUE", "CANCELLED"},
    "OVERDUE": {"IN_DELIVERY", "DELIVERED", "CANCELLED"},
    "DELIVERED": {"REFUNDED"},
    "CANCELLED": set(),
    "REFUNDED": set(),
}


@dataclass(slots=True)
class OrderCreationService:
    """General-purpose order entry; collection generation only borrows it."""

    order_repository: OrderRepository = OrderRepository()
    customer_repository: CustomerRepository = CustomerRepository()

    def create_order(self, session: Session, payload: OrderCreate) -> CollectionOrder:
        customer = self.customer_repository.get(session, payload.customer_id)
        reasons: list[str] = []
        if customer is None:
            reasons.append("customer not found")
        elif not customer.is_active:
            reasons.append("customer is inactive")
        elif customer.zone_id is None:
            reasons.append("customer has no delivery zone")
        if payload.scheduled_delivery_date is not None and payload.scheduled_delivery_date < payload.order_date:
            reasons.append("scheduled_delivery_date precedes order_date")
        if payload.status not in VALID_ORDER_TRANSITIONS:
            reasons.append(f"unknown status {payload.status}")
        if reasons:
            raise OrderValidationError("order rejected", reasons)

        order = CollectionOrder(
            customer_id=payload.customer_id,
            subscription_id=payload.subscription_id,
            order_date=payload.order_date,
            scheduled_delivery_date=payload.scheduled_delivery_date or payload.order_date,
            status=payload.status,
            total_amount=Decimal("0"),
            paid_amount=Decimal("0"),
            is_automated=payload.is_automated,
            notes=payload.notes,
        )
        return self.order_repository.add(session, order)

    def insert_minimal(self, session: Session, payload: OrderCreate) -> CollectionOrder:
        order = CollectionOrder(
            customer_id=payload.customer_id,
            subscription_id=payload.subscription_id,
            order_date=payload.order_date,
            scheduled_delivery_date=payload.scheduled_delivery_date or payload.order_date,
            status="PENDING",
            is_automated=payload.is_automated,
            notes=payload.notes,
        )
        return self.order_repository.add(session, order)


order_creation_service = OrderCreationService()
