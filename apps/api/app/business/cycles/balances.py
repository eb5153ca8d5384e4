from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from app.business.cycles.models import SubscriptionCycle, SubscriptionCycleDetail

CENT = Decimal("0.01")
ZERO = Decimal("0")


def money(value: Decimal | int | str) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def resolve_payment_status(cycle: SubscriptionCycle) -> str:
    """Single precedence rule: unpriced, settled, overdue, partially paid, then pending."""
    total = Decimal(cycle.total_amount or ZERO)
    pending = Decimal(cycle.pending_balance or ZERO)
    credit = Decimal(cycle.credit_balance or ZERO)
    paid = Decimal(cycle.paid_amount or ZERO)
    if total <= ZERO and paid <= ZERO:
        # Nothing charged yet is not the same as settled.
        return "PENDING"
    if pending <= ZERO:
        return "CREDITED" if credit > ZERO else "PAID"
    if cycle.is_overdue:
        return "OVERDUE"
    if paid > ZERO:
        return "PARTIAL"
    return "PENDING"


def recompute_cycle_balances(cycle: SubscriptionCycle) -> SubscriptionCycle:
    total = money(cycle.total_amount or ZERO)
    paid = money(cycle.paid_amount or ZERO)
    cycle.total_amount = total
    cycle.paid_amount = paid
    cycle.pending_balance = max(ZERO, money(total - paid))
    cycle.credit_balance = max(ZERO, money(paid - total))
    cycle.payment_status = resolve_payment_status(cycle)
    return cycle


def recompute_detail_balance(detail: SubscriptionCycleDetail) -> SubscriptionCycleDetail:
    detail.delivered_quantity = max(0, int(detail.delivered_quantity or 0))
    detail.remaining_balance = max(0, int(detail.planned_quantity) - detail.delivered_quantity)
    return detail


def days_overdue(cycle: SubscriptionCycle, today: date) -> int:
    if Decimal(cycle.pending_balance or ZERO) <= ZERO:
        return 0
    return max(0, (today - cycle.payment_due_date).days)
