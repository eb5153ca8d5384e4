from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from app import events
from app.business.cycles.balances import ZERO, days_overdue, money, recompute_cycle_balances
from app.business.cycles.models import CyclePayment
from app.business.cycles.repository import CyclePaymentRepository, CycleRepository
from app.business.cycles.schemas import CycleRead, PaymentCreate, PaymentRead, SemaphoreRead
from app.business.subscription.repository import CustomerRepository
from app.core.config import get_settings


logger = logging.getLogger("app.billing.payments")


@dataclass(slots=True)
class CyclePaymentService:
    cycle_repository: CycleRepository = CycleRepository()
    payment_repository: CyclePaymentRepository = CyclePaymentRepository()
    customer_repository: CustomerRepository = CustomerRepository()

    def apply_payment(self, session: Session, cycle_id: uuid.UUID, payload: PaymentCreate) -> CycleRead:
        cycle = self.cycle_repository.require_with_details(session, cycle_id)
        amount = money(payload.amount)
        payment = CyclePayment(
            cycle_id=cycle.id,
            amount=amount,
            payment_date=payload.payment_date,
            payment_method=payload.payment_method,
            reference=payload.reference,
        )
        session.add(payment)
        cycle.paid_amount = money(Decimal(cycle.paid_amount) + amount)
        recompute_cycle_balances(cycle)
        session.commit()
        session.refresh(cycle)

        events.publish(
            {
                "event_type": "cycle.payment_applied",
                "cycle_id": str(cycle.id),
                "subscription_id": str(cycle.subscription_id),
                "amount": str(amount),
                "pending_balance": str(cycle.pending_balance),
                "payment_status": cycle.payment_status,
            }
        )
        logger.info("cycle.payment_applied", extra={"cycle_id": str(cycle.id), "status": cycle.payment_status})
        return CycleRead.model_validate(cycle)

    def recalculate_balances(self, session: Session, cycle_id: uuid.UUID) -> CycleRead:
        cycle = self.cycle_repository.require_with_details(session, cycle_id)
        cycle.paid_amount = money(self.payment_repository.total_for_cycle(session, cycle.id))
        recompute_cycle_balances(cycle)
        session.commit()
        session.refresh(cycle)
        return CycleRead.model_validate(cycle)

    def list_payments(self, session: Session, cycle_id: uuid.UUID) -> list[PaymentRead]:
        self.cycle_repository.require(session, cycle_id)
        return [PaymentRead.model_validate(row) for row in self.payment_repository.list_for_cycle(session, cycle_id)]

    def customer_payment_semaphore(self, session: Session, customer_id: uuid.UUID, today: date) -> SemaphoreRead:
        self.customer_repository.require(session, customer_id)
        cycles = self.cycle_repository.list_for_customer(session, customer_id)
        pending = [cycle for cycle in cycles if Decimal(cycle.pending_balance) > ZERO]
        max_days = max((days_overdue(cycle, today) for cycle in pending), default=0)

        if not cycles:
            semaphore = "NONE"
        elif not pending:
            semaphore = "GREEN"
        elif max_days > get_settings().semaphore_red_days:
            semaphore = "RED"
        else:
            semaphore = "YELLOW"
        return SemaphoreRead(
            customer_id=customer_id,
            semaphore=semaphore,
            max_days_overdue=max_days,
            pending_cycles=len(pending),
        )


cycle_payment_service = CyclePaymentService()
