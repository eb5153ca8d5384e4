from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.business.collections.edit import OrderCollectionEditService
from app.business.collections.manual import ManualCollectionService
from app.business.collections.models import CollectionOrder, CollectionOrderCycle
from app.business.collections.route_sheet import build_collection_route_sheet
from app.business.collections.service import CollectionOrderService
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.payments import CyclePaymentService
from app.business.cycles.schemas import PaymentCreate
from app.business.subscription.schemas import CustomerCreate, PlanCreate, PlanProductCreate, SubscriptionCreate
from app.business.subscription.service import SubscriptionService
from app.core.database import Base
from app.core.errors import NotFoundError, ValidationError


ZONE = uuid.UUID("00000000-0000-4000-8000-00000000000a")


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def reset_stubs() -> Generator[None, None, None]:
    events.published_events.clear()
    audit.audit_entries.clear()
    yield
    events.published_events.clear()
    audit.audit_entries.clear()


@pytest.fixture()
def plan_id(db_session: Session) -> uuid.UUID:
    plan = SubscriptionService().create_plan(
        db_session,
        PlanCreate(
            name="Water 6",
            code="MANUAL-6",
            price=Decimal("1000"),
            products=[PlanProductCreate(product_id=uuid.uuid4(), quantity=6, unit_price=Decimal("0"))],
        ),
    )
    return plan.id


def _customer(session: Session, name: str) -> uuid.UUID:
    return SubscriptionService().create_customer(session, CustomerCreate(name=name, zone_id=ZONE, address="Calle 5")).id


def _cycle_for(session: Session, customer_id: uuid.UUID, plan_id: uuid.UUID, start: date = date(2024, 4, 25)) -> uuid.UUID:
    subscription = SubscriptionService().create_subscription(
        session, SubscriptionCreate(customer_id=customer_id, plan_id=plan_id, start_date=start)
    )
    cycle_id = session.scalar(select(SubscriptionCycle.id).where(SubscriptionCycle.subscription_id == subscription.id))
    assert cycle_id is not None
    return cycle_id


def test_manual_generation_bills_selected_cycles(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Lucia")
    first = _cycle_for(db_session, customer_id, plan_id)
    second = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))

    result = ManualCollectionService().generate(
        db_session, customer_id, [first, second], date(2024, 6, 5), actor_user_id="ops-7"
    )

    assert result.success is True
    assert result.action == "created"
    assert result.cycles_processed == 2
    assert result.billable_amount == Decimal("2000.00")

    order = db_session.get(CollectionOrder, result.order_id)
    assert order is not None
    assert order.is_automated is False
    assert order.order_date == date(2024, 6, 5)

    entries = [entry for entry in audit.audit_entries if entry["entity_type"] == "billing.collection_order"]
    assert entries[-1]["action"] == "manual_collection_created"
    assert entries[-1]["actor_user_id"] == "ops-7"
    assert len(events.events_of_type("collection_order.created")) == 1
    assert len(events.events_of_type("collection_order.cycle_linked")) == 1


def test_validation_reports_every_reason_and_writes_nothing(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Marta")
    own = _cycle_for(db_session, customer_id, plan_id)
    foreign = _cycle_for(db_session, _customer(db_session, "Nico"), plan_id)
    missing = uuid.uuid4()

    with pytest.raises(ValidationError) as exc_info:
        ManualCollectionService().generate(db_session, customer_id, [own, foreign, missing, own], date(2024, 6, 5))

    reasons = exc_info.value.reasons
    assert len(reasons) == 3
    assert any("duplicated" in reason for reason in reasons)
    assert any(str(foreign) in reason and "does not belong" in reason for reason in reasons)
    assert any(str(missing) in reason and "not found" in reason for reason in reasons)
    assert exc_info.value.status_code == 422
    assert db_session.scalars(select(CollectionOrder)).all() == []


def test_settled_and_already_billed_cycles_are_rejected(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Olga")
    settled = _cycle_for(db_session, customer_id, plan_id)
    billed = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    CyclePaymentService().apply_payment(db_session, settled, PaymentCreate(amount=Decimal("1000"), payment_date=date(2024, 6, 1)))
    ManualCollectionService().generate(db_session, customer_id, [billed], date(2024, 6, 5))

    with pytest.raises(ValidationError) as exc_info:
        ManualCollectionService().generate(db_session, customer_id, [settled, billed], date(2024, 6, 6))

    assert any("no pending balance" in reason for reason in exc_info.value.reasons)
    assert any("already billed" in reason for reason in exc_info.value.reasons)


def test_inactive_or_unknown_customer_is_rejected(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Pablo")
    cycle_id = _cycle_for(db_session, customer_id, plan_id)
    SubscriptionService().deactivate_customer(db_session, customer_id)

    with pytest.raises(ValidationError):
        ManualCollectionService().generate(db_session, customer_id, [cycle_id], date(2024, 6, 5))
    with pytest.raises(NotFoundError):
        ManualCollectionService().generate(db_session, uuid.uuid4(), [cycle_id], date(2024, 6, 5))


def test_second_manual_run_same_day_updates_open_order(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Quique")
    first = _cycle_for(db_session, customer_id, plan_id)
    second = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    service = ManualCollectionService()
    created = service.generate(db_session, customer_id, [first], date(2024, 6, 5))

    existing = service.check_existing_order(db_session, customer_id, date(2024, 6, 5))
    assert existing is not None
    assert existing.order_id == created.order_id
    assert existing.cycle_count == 1
    assert service.check_existing_order(db_session, customer_id, date(2024, 6, 6)) is None

    updated = service.generate(db_session, customer_id, [second], date(2024, 6, 5))
    assert updated.action == "updated"
    assert updated.order_id == created.order_id
    assert updated.billable_amount == Decimal("2000.00")


def test_pending_cycles_show_overdue_days_and_billing_order(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Rita")
    first = _cycle_for(db_session, customer_id, plan_id)
    _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    result = ManualCollectionService().generate(db_session, customer_id, [first], date(2024, 6, 5))

    pending = ManualCollectionService().customer_pending_cycles(db_session, customer_id, date(2024, 6, 8))

    assert [item.payment_due_date for item in pending] == [date(2024, 6, 3), date(2024, 6, 9)]
    assert pending[0].days_overdue == 5
    assert pending[0].billed_by_order_id == result.order_id
    assert pending[1].days_overdue == 0
    assert pending[1].billed_by_order_id is None
    assert pending[0].plan_name == "Water 6"


def test_edit_adds_cycles_to_existing_order(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Sara")
    first = _cycle_for(db_session, customer_id, plan_id)
    second = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    created = ManualCollectionService().generate(db_session, customer_id, [first], date(2024, 6, 5))
    editor = OrderCollectionEditService()

    result = editor.add_collection_to_existing_order(db_session, created.order_id, customer_id, [second], actor_user_id="ops-2")

    assert result.action == "updated"
    assert result.cycles_processed == 1
    assert result.billable_amount == Decimal("2000.00")
    assert audit.audit_entries[-1]["action"] == "manual_collection_updated"

    found = editor.find_existing_order_for_date(db_session, customer_id, date(2024, 6, 5))
    assert found is not None
    assert found.cycle_count == 2


def test_edit_rejects_foreign_or_closed_orders(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Tomas")
    other_id = _customer(db_session, "Ursula")
    first = _cycle_for(db_session, customer_id, plan_id)
    second = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    created = ManualCollectionService().generate(db_session, customer_id, [first], date(2024, 6, 5))
    editor = OrderCollectionEditService()

    with pytest.raises(ValidationError):
        editor.add_collection_to_existing_order(db_session, created.order_id, other_id, [second])

    CollectionOrderService().cancel_order(db_session, created.order_id)
    with pytest.raises(ValidationError) as exc_info:
        editor.add_collection_to_existing_order(db_session, created.order_id, customer_id, [second])
    assert "CANCELLED" in exc_info.value.detail


def test_cancel_releases_cycles_for_rebilling(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Vera")
    cycle_id = _cycle_for(db_session, customer_id, plan_id)
    created = ManualCollectionService().generate(db_session, customer_id, [cycle_id], date(2024, 6, 5))

    cancelled = CollectionOrderService().cancel_order(db_session, created.order_id, actor_user_id="ops-3")
    assert cancelled.status == "CANCELLED"
    assert cancelled.cycles == []
    assert db_session.scalars(select(CollectionOrderCycle)).all() == []
    assert events.events_of_type("collection_order.cancelled")[0]["released_cycle_ids"] == [str(cycle_id)]

    rebilled = ManualCollectionService().generate(db_session, customer_id, [cycle_id], date(2024, 6, 5))
    assert rebilled.action == "created"
    assert rebilled.order_id != created.order_id

    with pytest.raises(ValidationError):
        CollectionOrderService().cancel_order(db_session, created.order_id)


def test_order_with_payments_cannot_be_cancelled(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Walter")
    cycle_id = _cycle_for(db_session, customer_id, plan_id)
    created = ManualCollectionService().generate(db_session, customer_id, [cycle_id], date(2024, 6, 5))
    CyclePaymentService().apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("100"), payment_date=date(2024, 6, 5)))

    with pytest.raises(ValidationError) as exc_info:
        CollectionOrderService().cancel_order(db_session, created.order_id)
    assert exc_info.value.reasons == [f"cycle {cycle_id} has payments"]


def test_overdue_job_moves_stale_open_orders(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Ximena")
    cycle_id = _cycle_for(db_session, customer_id, plan_id)
    created = ManualCollectionService().generate(db_session, customer_id, [cycle_id], date(2024, 6, 5))
    service = CollectionOrderService()

    assert service.mark_overdue_orders(db_session, date(2024, 6, 7)).processed == 0

    summary = service.mark_overdue_orders(db_session, date(2024, 6, 8))
    assert summary.processed == 1
    assert service.get_order(db_session, created.order_id).status == "OVERDUE"
    assert service.mark_overdue_orders(db_session, date(2024, 6, 9)).processed == 0


def test_collection_route_sheet_rows(db_session: Session, plan_id: uuid.UUID) -> None:
    customer_id = _customer(db_session, "Yago")
    first = _cycle_for(db_session, customer_id, plan_id)
    second = _cycle_for(db_session, customer_id, plan_id, date(2024, 5, 1))
    ManualCollectionService().generate(db_session, customer_id, [first, second], date(2024, 6, 5))

    sheet = build_collection_route_sheet(db_session, date(2024, 6, 5), ZONE)

    assert sheet.total_amount == Decimal("2000.00")
    assert len(sheet.rows) == 1
    row = sheet.rows[0]
    assert row.customer_name == "Yago"
    assert row.address == "Calle 5"
    assert row.payment_due_date == date(2024, 6, 3)
    assert row.payment_status == "PENDING"
    assert [credit.remaining for credit in row.credits] == [6, 6]

    assert build_collection_route_sheet(db_session, date(2024, 6, 5), uuid.uuid4()).rows == []
