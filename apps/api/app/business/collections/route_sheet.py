from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy.orm import Session

from app.business.collections.repository import OrderRepository
from app.business.collections.schemas import CollectionRouteSheet, CollectionRouteSheetRow, RouteSheetCredit
from app.business.collections.service import billable_amount
from app.business.cycles.balances import ZERO, money, resolve_payment_status

_order_repository = OrderRepository()


def build_collection_route_sheet(session: Session, day: date, zone_id: uuid.UUID | None = None) -> CollectionRouteSheet:
    """Flat per-order rows for the collection run of one day; rendering is left to the caller."""
    rows: list[CollectionRouteSheetRow] = []
    for order in _order_repository.orders_for_day(session, day, zone_id):
        cycles = sorted((link.cycle for link in order.cycle_links), key=lambda item: (item.payment_due_date, item.cycle_number))
        earliest = cycles[0] if cycles else None
        credits = [
            RouteSheetCredit(
                cycle_number=cycle.cycle_number,
                product_id=detail.product_id,
                planned=detail.planned_quantity,
                delivered=detail.delivered_quantity,
                remaining=detail.remaining_balance,
            )
            for cycle in cycles
            for detail in sorted(cycle.details, key=lambda item: str(item.product_id))
            if detail.remaining_balance > 0
        ]
        rows.append(
            CollectionRouteSheetRow(
                customer_id=order.customer_id,
                customer_name=order.customer.name,
                zone_id=order.customer.zone_id,
                address=order.customer.address,
                order_id=order.id,
                order_status=order.status,
                amount=billable_amount(order),
                payment_due_date=earliest.payment_due_date if earliest else None,
                payment_status=resolve_payment_status(earliest) if earliest else "PAID",
                credits=credits,
            )
        )
    total = money(sum((row.amount for row in rows), ZERO))
    return CollectionRouteSheet(delivery_date=day, zone_id=zone_id, total_amount=total, rows=rows)
