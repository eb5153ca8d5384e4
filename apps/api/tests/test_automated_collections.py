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
from app.business.collections.automated import AutomatedCollectionGenerator
from app.business.collections.models import CollectionOrder, CollectionOrderCycle
from app.business.collections.service import CollectionOrderService
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.payments import CyclePaymentService
from app.business.cycles.schemas import PaymentCreate
from app.business.collections.repository import OrderRepository
from app.business.outcomes import Created, Failed, Skipped, Updated
from app.business.subscription.schemas import CustomerCreate, PlanCreate, PlanProductCreate, SubscriptionCreate
from app.business.subscription.service import SubscriptionService
from app.core.database import Base


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


def _plan(session: Session) -> uuid.UUID:
    plan = SubscriptionService().create_plan(
        session,
        PlanCreate(
            name="Water 6",
            code=f"AUTO-{uuid.uuid4().hex[:6]}",
            price=Decimal("1000"),
            products=[PlanProductCreate(product_id=uuid.uuid4(), quantity=6, unit_price=Decimal("0"))],
        ),
    )
    return plan.id


def _customer(session: Session, name: str, *, zoned: bool = True) -> uuid.UUID:
    customer = SubscriptionService().create_customer(
        session, CustomerCreate(name=name, zone_id=uuid.uuid4() if zoned else None, address="Main St 1")
    )
    return customer.id


def _subscribe(session: Session, customer_id: uuid.UUID, plan_id: uuid.UUID, start: date) -> uuid.UUID:
    subscription = SubscriptionService().create_subscription(
        session, SubscriptionCreate(customer_id=customer_id, plan_id=plan_id, start_date=start)
    )
    cycle_id = session.scalar(select(SubscriptionCycle.id).where(SubscriptionCycle.subscription_id == subscription.id))
    assert cycle_id is not None
    return cycle_id


def test_two_cycles_due_same_day_share_one_order(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Ana")
    # Both cycles end on 2024-05-24 and fall due on Monday 2024-06-03.
    first_cycle = _subscribe(db_session, customer_id, plan_id, date(2024, 4, 25))
    second_cycle = _subscribe(db_session, customer_id, plan_id, date(2024, 4, 25))

    report = AutomatedCollectionGenerator().generate(db_session, date(2024, 6, 3))

    assert report.target_date == date(2024, 6, 3)
    assert report.summary.processed == 2
    assert report.summary.failed == 0
    assert sorted(result.outcome for result in report.results) == ["created", "updated"]
    assert {result.order_id for result in report.results} == {report.results[0].order_id}

    orders = db_session.scalars(select(CollectionOrder)).all()
    assert len(orders) == 1
    order = orders[0]
    assert order.order_date == date(2024, 6, 3)
    assert order.is_automated is True
    assert order.status == "PENDING"

    linked = set(db_session.scalars(select(CollectionOrderCycle.cycle_id)).all())
    assert linked == {first_cycle, second_cycle}

    read = CollectionOrderService().get_order(db_session, order.id)
    assert read.billable_amount == Decimal("2000.00")
    assert len(read.cycles) == 2

    assert len(events.events_of_type("collection_order.created")) == 1
    assert len(events.events_of_type("collection_order.cycle_linked")) == 1


def test_rerun_is_idempotent(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Bruno")
    _subscribe(db_session, customer_id, plan_id, date(2024, 4, 25))
    generator = AutomatedCollectionGenerator()
    generator.run(db_session, date(2024, 6, 3))

    summary = generator.run(db_session, date(2024, 6, 3))
    assert summary.processed == 1
    assert summary.skipped == 1
    assert isinstance(summary.outcomes[0], Skipped)
    assert "already billed" in summary.outcomes[0].reason
    assert len(db_session.scalars(select(CollectionOrder)).all()) == 1


def test_sunday_run_collects_saturday_due_cycles(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Carla")
    # Due on Saturday 2024-06-01.
    cycle_id = _subscribe(db_session, customer_id, plan_id, date(2024, 4, 23))

    report = AutomatedCollectionGenerator().generate(db_session, date(2024, 6, 2))

    assert report.target_date == date(2024, 6, 1)
    assert [result.cycle_id for result in report.results] == [cycle_id]
    order = db_session.scalars(select(CollectionOrder)).one()
    assert order.order_date == date(2024, 6, 1)


def test_orders_are_split_per_customer(db_session: Session) -> None:
    plan_id = _plan(db_session)
    _subscribe(db_session, _customer(db_session, "Dora"), plan_id, date(2024, 4, 25))
    _subscribe(db_session, _customer(db_session, "Elio"), plan_id, date(2024, 4, 25))

    summary = AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3))

    assert summary.processed == 2
    assert all(isinstance(item, Created) for item in summary.outcomes)
    assert len(db_session.scalars(select(CollectionOrder)).all()) == 2


def test_settled_cycles_are_not_collected(db_session: Session) -> None:
    plan_id = _plan(db_session)
    cycle_id = _subscribe(db_session, _customer(db_session, "Fabio"), plan_id, date(2024, 4, 25))
    CyclePaymentService().apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("1000"), payment_date=date(2024, 6, 1)))

    summary = AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3))

    assert summary.processed == 0
    assert db_session.scalars(select(CollectionOrder)).all() == []


def test_customer_without_zone_uses_minimal_order(db_session: Session) -> None:
    plan_id = _plan(db_session)
    _subscribe(db_session, _customer(db_session, "Gina", zoned=False), plan_id, date(2024, 4, 25))

    summary = AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3))

    assert summary.succeeded == 1
    order = db_session.scalars(select(CollectionOrder)).one()
    assert order.is_automated is True
    assert order.status == "PENDING"


def test_existing_manual_order_for_the_day_is_reused(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Hugo")
    _subscribe(db_session, customer_id, plan_id, date(2024, 4, 25))
    manual_order, created = CollectionOrderService().find_or_create_open_order(
        db_session, customer_id, date(2024, 6, 3), is_automated=False
    )
    db_session.commit()
    assert created is True

    summary = AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3))

    assert isinstance(summary.outcomes[0], Updated)
    assert summary.outcomes[0].entity_id == manual_order.id
    assert len(db_session.scalars(select(CollectionOrder)).all()) == 1


def test_backfill_bills_missed_days(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Iris")
    # Due on Friday 2024-05-31, three days before the run.
    cycle_id = _subscribe(db_session, customer_id, plan_id, date(2024, 4, 22))

    assert AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3)).processed == 0

    report = AutomatedCollectionGenerator().backfill_missed(db_session, date(2024, 6, 3))
    assert report.summary.processed == 1
    assert report.results[0].cycle_id == cycle_id
    order = db_session.scalars(select(CollectionOrder)).one()
    assert order.order_date == date(2024, 5, 31)

    again = AutomatedCollectionGenerator().backfill_missed(db_session, date(2024, 6, 3))
    assert again.summary.processed == 0


def test_upcoming_collections_list_unbilled_cycles(db_session: Session) -> None:
    plan_id = _plan(db_session)
    customer_id = _customer(db_session, "Joana")
    cycle_id = _subscribe(db_session, customer_id, plan_id, date(2024, 4, 23))

    upcoming = CollectionOrderService().upcoming_collections(db_session, date(2024, 5, 28), days=7)

    assert [item.cycle_id for item in upcoming] == [cycle_id]
    assert upcoming[0].payment_due_date == date(2024, 6, 1)
    assert upcoming[0].collection_date == date(2024, 6, 1)


def test_one_failing_cycle_does_not_block_the_batch(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    plan_id = _plan(db_session)
    broken_cycle = _subscribe(db_session, _customer(db_session, "Karla"), plan_id, date(2024, 4, 25))
    healthy_cycle = _subscribe(db_session, _customer(db_session, "Luis"), plan_id, date(2024, 4, 25))
    original = OrderRepository.link_cycle

    def flaky(self: OrderRepository, session: Session, order: CollectionOrder, cycle_id: uuid.UUID) -> CollectionOrderCycle:
        if cycle_id == broken_cycle:
            raise RuntimeError("connection reset")
        return original(self, session, order, cycle_id)

    monkeypatch.setattr(OrderRepository, "link_cycle", flaky)

    summary = AutomatedCollectionGenerator().run(db_session, date(2024, 6, 3))

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.succeeded == 1
    by_key = {outcome.key: outcome for outcome in summary.outcomes}
    assert isinstance(by_key[broken_cycle], Failed)
    assert isinstance(by_key[healthy_cycle], Created)

    # The broken customer's order was rolled back together with its link.
    order = db_session.scalars(select(CollectionOrder)).one()
    assert set(db_session.scalars(select(CollectionOrderCycle.cycle_id)).all()) == {healthy_cycle}
    assert order.id == by_key[healthy_cycle].entity_id


def test_cycle_linked_concurrently_is_skipped(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    plan_id = _plan(db_session)
    cycle_id = _subscribe(db_session, _customer(db_session, "Mara"), plan_id, date(2024, 4, 25))
    generator = AutomatedCollectionGenerator()
    generator.run(db_session, date(2024, 6, 3))

    # The link check no longer sees the committed link, as when another run wins between check and insert.
    monkeypatch.setattr(OrderRepository, "links_for_cycles", lambda self, session, cycle_ids: {})

    summary = generator.run(db_session, date(2024, 6, 3))

    assert summary.processed == 1
    assert summary.skipped == 1
    assert isinstance(summary.outcomes[0], Skipped)
    assert summary.outcomes[0].reason == "cycle was billed concurrently"
    assert db_session.scalars(select(CollectionOrderCycle.cycle_id)).all() == [cycle_id]


def test_open_order_race_reuses_the_winning_order(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    customer_id = _customer(db_session, "Nuno")
    service = CollectionOrderService()
    winner, created = service.find_or_create_open_order(db_session, customer_id, date(2024, 6, 3), is_automated=False)
    db_session.commit()
    assert created is True

    original = CollectionOrderService.find_open_order
    lookups: list[date] = []

    def misses_first_lookup(self: CollectionOrderService, session: Session, cid: uuid.UUID, day: date) -> CollectionOrder | None:
        lookups.append(day)
        if len(lookups) == 1:
            return None
        return original(self, session, cid, day)

    monkeypatch.setattr(CollectionOrderService, "find_open_order", misses_first_lookup)

    order, created = service.find_or_create_open_order(db_session, customer_id, date(2024, 6, 3), is_automated=True)

    assert created is False
    assert order.id == winner.id
    assert len(lookups) == 2
    assert len(db_session.scalars(select(CollectionOrder)).all()) == 1
