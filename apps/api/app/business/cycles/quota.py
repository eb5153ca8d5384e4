from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.orm import Session

from app.business.cycles.balances import recompute_detail_balance
from app.business.cycles.models import SubscriptionCycle, SubscriptionCycleDetail
from app.business.cycles.renewal import CycleRenewalScheduler
from app.business.cycles.repository import CycleRepository
from app.business.cycles.schemas import (
    LateFeeInfo,
    ProductCredit,
    QuotaItemRequest,
    QuotaItemResult,
    QuotaValidation,
)
from app.business.subscription.repository import SubscriptionRepository
from app.core.errors import DomainError, NotFoundError, ValidationError


logger = logging.getLogger("app.billing.quota")


def _aggregate_quantities(items: Iterable[QuotaItemRequest]) -> dict[uuid.UUID, int]:
    totals: dict[uuid.UUID, int] = {}
    reasons: list[str] = []
    for item in items:
        if item.quantity <= 0:
            reasons.append(f"quantity for product {item.product_id} must be greater than zero")
            continue
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    if reasons:
        raise ValidationError("invalid quantities", reasons)
    if not totals:
        raise ValidationError("no items requested")
    return totals


def _to_credit(detail: SubscriptionCycleDetail) -> ProductCredit:
    return ProductCredit(
        product_id=detail.product_id,
        planned_quantity=detail.planned_quantity,
        delivered_quantity=detail.delivered_quantity,
        remaining_balance=detail.remaining_balance,
    )


@dataclass(slots=True)
class QuotaLedger:
    renewal: CycleRenewalScheduler = field(default_factory=CycleRenewalScheduler)
    cycle_repository: CycleRepository = CycleRepository()
    subscription_repository: SubscriptionRepository = SubscriptionRepository()

    def get_active_cycle(self, session: Session, subscription_id: uuid.UUID, today: date) -> SubscriptionCycle:
        subscription = self.subscription_repository.require(session, subscription_id)
        cycle = self.cycle_repository.find_covering(session, subscription_id, today)
        if cycle is not None:
            return cycle
        if subscription.status != "ACTIVE":
            raise ValidationError(f"subscription is {subscription.status}; no active cycle")

        cycle, created = self.renewal.open_cycle(session, subscription_id, today)
        if created:
            logger.info(
                "cycle.created_on_demand",
                extra={"subscription_id": str(subscription_id), "cycle_id": str(cycle.id)},
            )
        return self.cycle_repository.require_with_details(session, cycle.id)

    def validate(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        items: Iterable[QuotaItemRequest],
        today: date,
    ) -> QuotaValidation:
        requested = _aggregate_quantities(items)
        subscription = self.subscription_repository.require(session, subscription_id)
        if subscription.status != "ACTIVE":
            raise ValidationError(f"subscription is {subscription.status}")

        cycle = self.get_active_cycle(session, subscription_id, today)
        details = {detail.product_id: detail for detail in cycle.details}

        results: list[QuotaItemResult] = []
        for product_id, quantity in requested.items():
            detail = details.get(product_id)
            if detail is None:
                results.append(
                    QuotaItemResult(
                        product_id=product_id,
                        planned=0,
                        delivered=0,
                        remaining=0,
                        requested=quantity,
                        covered_by_subscription=0,
                        additional_quantity=quantity,
                    )
                )
                continue
            covered = min(quantity, detail.remaining_balance)
            results.append(
                QuotaItemResult(
                    product_id=product_id,
                    planned=detail.planned_quantity,
                    delivered=detail.delivered_quantity,
                    remaining=detail.remaining_balance,
                    requested=quantity,
                    covered_by_subscription=covered,
                    additional_quantity=quantity - covered,
                )
            )

        return QuotaValidation(
            subscription_id=subscription_id,
            cycle_id=cycle.id,
            items=results,
            has_additional_charges=any(item.additional_quantity > 0 for item in results),
            late_fee_info=LateFeeInfo(
                is_overdue=cycle.is_overdue,
                late_fee_percentage=cycle.late_fee_percentage,
                late_fee_applied=cycle.late_fee_applied,
                payment_due_date=cycle.payment_due_date,
            ),
        )

    def available_credits(self, session: Session, subscription_id: uuid.UUID, today: date) -> list[ProductCredit]:
        try:
            cycle = self.get_active_cycle(session, subscription_id, today)
        except DomainError as exc:
            logger.warning(
                "quota.credits_unavailable",
                extra={"subscription_id": str(subscription_id), "error": exc.detail},
            )
            return []
        return [_to_credit(detail) for detail in cycle.details]

    def apply_delivery(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        items: Iterable[QuotaItemRequest],
        today: date,
    ) -> list[ProductCredit]:
        delivered = _aggregate_quantities(items)
        cycle = self.get_active_cycle(session, subscription_id, today)
        for detail in cycle.details:
            quantity = delivered.get(detail.product_id)
            if quantity is None:
                continue
            detail.delivered_quantity = detail.delivered_quantity + quantity
            recompute_detail_balance(detail)
        session.commit()
        return [_to_credit(detail) for detail in self.cycle_repository.require_with_details(session, cycle.id).details]

    def reverse_delivery(
        self,
        session: Session,
        subscription_id: uuid.UUID,
        items: Iterable[QuotaItemRequest],
        today: date,
        *,
        cycle_id: uuid.UUID | None = None,
    ) -> list[ProductCredit]:
        returned = _aggregate_quantities(items)
        if cycle_id is None:
            cycle = self.get_active_cycle(session, subscription_id, today)
        else:
            cycle = self.cycle_repository.require_with_details(session, cycle_id)
            if cycle.subscription_id != subscription_id:
                raise NotFoundError("cycle not found")
        for detail in cycle.details:
            quantity = returned.get(detail.product_id)
            if quantity is None:
                continue
            detail.delivered_quantity = max(0, detail.delivered_quantity - quantity)
            recompute_detail_balance(detail)
        session.commit()
        return [_to_credit(detail) for detail in self.cycle_repository.require_with_details(session, cycle.id).details]


quota_ledger = QuotaLedger()
