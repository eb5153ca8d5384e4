from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session

from app.business.cycles.repository import CycleRepository
from app.business.cycles.schemas import CycleRead
from app.business.subscription.repository import SubscriptionRepository
from app.core.errors import NotFoundError


@dataclass(slots=True)
class CycleService:
    cycle_repository: CycleRepository = CycleRepository()
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def list_cycles(self, session: Session, subscription_id: uuid.UUID) -> list[CycleRead]:
        self.subscription_repository.require(session, subscription_id)
        return [CycleRead.model_validate(row) for row in self.cycle_repository.list_for_subscription(session, subscription_id)]

    def get_cycle(self, session: Session, cycle_id: uuid.UUID) -> CycleRead:
        return CycleRead.model_validate(self.cycle_repository.require_with_details(session, cycle_id))

    def current_cycle(self, session: Session, subscription_id: uuid.UUID, today: date) -> CycleRead:
        """Read-only lookup; opening a missing cycle is left to renewal and quota writes."""
        self.subscription_repository.require(session, subscription_id)
        cycle = self.cycle_repository.find_covering(session, subscription_id, today)
        if cycle is None:
            raise NotFoundError(f"no cycle covers {today.isoformat()}")
        return CycleRead.model_validate(cycle)


cycle_service = CycleService()
