from __future__ import annotations

import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app import audit
from app.business.collections.manual import BillableCycleValidator, ManualCollectionService
from app.business.collections.models import OPEN_ORDER_STATUSES
from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import ExistingOrderRead, ManualCollectionResult
from app.core.errors import ValidationError


@dataclass(slots=True)
class OrderCollectionEditService:
    manual: ManualCollectionService = field(default_factory=ManualCollectionService)
    validator: BillableCycleValidator = field(default_factory=BillableCycleValidator)
    order_repository: OrderRepository = OrderRepository()

    def add_collection_to_existing_order(
        self,
        session: Session,
        order_id: uuid.UUID,
        customer_id: uuid.UUID,
        cycle_ids: Sequence[uuid.UUID],
        *,
        actor_user_id: str = audit.SYSTEM_ACTOR,
    ) -> ManualCollectionResult:
        order = self.order_repository.require_with_links(session, order_id)
        if order.customer_id != customer_id:
            raise ValidationError(f"order {order_id} does not belong to customer {customer_id}")
        if order.status not in OPEN_ORDER_STATUSES:
            raise ValidationError(f"order is {order.status} and cannot take new collections")

        cycles = self.validator.validate(session, customer_id, cycle_ids)
        return self.manual._attach(session, order, cycles, created=False, actor_user_id=actor_user_id)

    def find_existing_order_for_date(
        self, session: Session, customer_id: uuid.UUID, collection_date: date
    ) -> ExistingOrderRead | None:
        return self.manual.check_existing_order(session, customer_id, collection_date)


order_collection_edit_service = OrderCollectionEditService()
