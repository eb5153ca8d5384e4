from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from sqlalchemy.orm import Session

from app.business.subscription.repository import PlanRepository
from app.core.errors import NotFoundError


@dataclass(frozen=True, slots=True)
class PlanProductLine:
    product_id: uuid.UUID
    quantity: int
    unit_price: Decimal


class PlanCatalog(Protocol):
    def get_plan_products(self, session: Session, plan_id: uuid.UUID) -> list[PlanProductLine]: ...

    def get_plan_price(self, session: Session, plan_id: uuid.UUID) -> Decimal: ...


class DbPlanCatalog:
    """Reads plan composition from the local plan tables."""

    plan_repository = PlanRepository()

    def get_plan_products(self, session: Session, plan_id: uuid.UUID) -> list[PlanProductLine]:
        plan = self.plan_repository.get_with_products(session, plan_id)
        if plan is None:
            raise NotFoundError("subscription plan not found")
        return [
            PlanProductLine(product_id=item.product_id, quantity=int(item.quantity), unit_price=Decimal(item.unit_price))
            for item in plan.products
        ]

    def get_plan_price(self, session: Session, plan_id: uuid.UUID) -> Decimal:
        plan = self.plan_repository.get(session, plan_id)
        if plan is None:
            raise NotFoundError("subscription plan not found")
        return Decimal(plan.price)


@dataclass(slots=True)
class PricingCalculator:
    catalog: PlanCatalog = field(default_factory=DbPlanCatalog)

    def cycle_total(self, session: Session, plan_id: uuid.UUID, lines: Iterable[PlanProductLine]) -> Decimal:
        """Sum the priced plan lines, falling back to the flat plan price when none carry a price."""
        total = sum((Decimal(line.quantity) * line.unit_price for line in lines), Decimal("0"))
        if total <= 0:
            return self.catalog.get_plan_price(session, plan_id)
        return total
