from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import events
from app.business.cycles.late_fees import LateFeeEscalator
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.payments import CyclePaymentService
from app.business.cycles.schemas import PaymentCreate
from app.business.outcomes import Failed, Skipped, Updated
from app.business.subscription.catalog import PlanProductLine
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
def reset_events() -> Generator[None, None, None]:
    events.published_events.clear()
    yield
    events.published_events.clear()


def _seed_cycle(session: Session, code: str = "LATE-6") -> uuid.UUID:
    service = SubscriptionService()
    customer = service.create_customer(session, CustomerCreate(name="Late Customer", zone_id=uuid.uuid4()))
    plan = service.create_plan(
        session,
        PlanCreate(
            name="Water 6",
            code=code,
            price=Decimal("1000"),
            products=[PlanProductCreate(product_id=uuid.uuid4(), quantity=6, unit_price=Decimal("0"))],
        ),
    )
    subscription = service.create_subscription(
        session, SubscriptionCreate(customer_id=customer.id, plan_id=plan.id, start_date=date(2024, 4, 25))
    )
    cycle_id = session.scalar(select(SubscriptionCycle.id).where(SubscriptionCycle.subscription_id == subscription.id))
    assert cycle_id is not None
    return cycle_id


def test_late_fee_applies_once_after_grace_period(db_session: Session) -> None:
    cycle_id = _seed_cycle(db_session)
    escalator = LateFeeEscalator()

    within_grace = escalator.run(db_session, date(2024, 6, 12))
    assert within_grace.processed == 0

    summary = escalator.run(db_session, date(2024, 6, 13))
    assert summary.processed == 1
    assert isinstance(summary.outcomes[0], Updated)

    cycle = db_session.get(SubscriptionCycle, cycle_id)
    assert cycle is not None
    db_session.refresh(cycle)
    assert cycle.total_amount == Decimal("1200.00")
    assert cycle.pending_balance == Decimal("1200.00")
    assert cycle.payment_status == "OVERDUE"
    assert cycle.is_overdue is True
    assert cycle.late_fee_applied is True
    assert cycle.late_fee_percentage == Decimal("0.2000")

    applied = events.events_of_type("cycle.late_fee_applied")
    assert len(applied) == 1
    assert applied[0]["surcharge"] == "200.00"


def test_second_run_does_not_compound_fee(db_session: Session) -> None:
    cycle_id = _seed_cycle(db_session)
    escalator = LateFeeEscalator()
    escalator.run(db_session, date(2024, 6, 13))

    again = escalator.run(db_session, date(2024, 6, 20))
    assert again.processed == 0

    direct = escalator.escalate_cycle(db_session, cycle_id, date(2024, 6, 20))
    assert isinstance(direct, Skipped)
    assert direct.reason == "late fee already applied"

    cycle = db_session.get(SubscriptionCycle, cycle_id)
    assert cycle is not None
    assert cycle.total_amount == Decimal("1200.00")
    assert len(events.events_of_type("cycle.late_fee_applied")) == 1


def test_partial_payment_keeps_paid_amount_after_fee(db_session: Session) -> None:
    cycle_id = _seed_cycle(db_session)
    CyclePaymentService().apply_payment(
        db_session, cycle_id, PaymentCreate(amount=Decimal("400"), payment_date=date(2024, 6, 1))
    )

    LateFeeEscalator().run(db_session, date(2024, 6, 13))

    cycle = db_session.get(SubscriptionCycle, cycle_id)
    assert cycle is not None
    db_session.refresh(cycle)
    assert cycle.total_amount == Decimal("1200.00")
    assert cycle.paid_amount == Decimal("400.00")
    assert cycle.pending_balance == Decimal("800.00")
    assert cycle.payment_status == "OVERDUE"


def test_settled_cycle_is_not_escalated(db_session: Session) -> None:
    cycle_id = _seed_cycle(db_session)
    CyclePaymentService().apply_payment(
        db_session, cycle_id, PaymentCreate(amount=Decimal("1000"), payment_date=date(2024, 6, 1))
    )

    summary = LateFeeEscalator().run(db_session, date(2024, 6, 13))
    assert summary.processed == 0

    outcome = LateFeeEscalator().escalate_cycle(db_session, cycle_id, date(2024, 6, 13))
    assert isinstance(outcome, Skipped)
    assert outcome.reason == "nothing pending"


def test_unknown_cycle_is_skipped_by_isolated_escalation(db_session: Session) -> None:
    outcome = LateFeeEscalator()._escalate_isolated(db_session, uuid.uuid4(), date(2024, 6, 13))
    assert isinstance(outcome, Skipped)
    assert outcome.reason == "cycle not found"


class FlatPriceCatalog:
    def __init__(self, price: Decimal) -> None:
        self.price = price

    def get_plan_products(self, session: Session, plan_id: uuid.UUID) -> list[PlanProductLine]:
        return []

    def get_plan_price(self, session: Session, plan_id: uuid.UUID) -> Decimal:
        return self.price


def test_one_failing_cycle_does_not_block_the_batch(db_session: Session, monkeypatch: pytest.MonkeyPatch) -> None:
    broken_id = _seed_cycle(db_session, code="LATE-A")
    healthy_id = _seed_cycle(db_session, code="LATE-B")
    original = LateFeeEscalator.escalate_cycle

    def flaky(self: LateFeeEscalator, session: Session, cycle_id: uuid.UUID, today: date):  # type: ignore[no-untyped-def]
        if cycle_id == broken_id:
            raise RuntimeError("row lock timeout")
        return original(self, session, cycle_id, today)

    monkeypatch.setattr(LateFeeEscalator, "escalate_cycle", flaky)

    summary = LateFeeEscalator().run(db_session, date(2024, 6, 13))

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.succeeded == 1
    by_key = {outcome.key: outcome for outcome in summary.outcomes}
    assert isinstance(by_key[broken_id], Failed)
    assert by_key[broken_id].reason == "row lock timeout"
    assert isinstance(by_key[healthy_id], Updated)

    broken = db_session.get(SubscriptionCycle, broken_id)
    assert broken is not None
    db_session.refresh(broken)
    assert broken.late_fee_applied is False
    assert broken.total_amount == Decimal("1000.00")


def test_cycle_without_total_escalates_from_catalog_plan_price(db_session: Session) -> None:
    cycle_id = _seed_cycle(db_session)
    cycle = db_session.get(SubscriptionCycle, cycle_id)
    assert cycle is not None
    # Balances carried over from an import can owe an amount without a cycle total.
    cycle.total_amount = Decimal("0")
    cycle.pending_balance = Decimal("500")
    db_session.commit()

    escalator = LateFeeEscalator(catalog=FlatPriceCatalog(Decimal("750")))
    outcome = escalator.escalate_cycle(db_session, cycle_id, date(2024, 6, 13))

    assert isinstance(outcome, Updated)
    db_session.refresh(cycle)
    assert cycle.total_amount == Decimal("900.00")
    assert cycle.pending_balance == Decimal("900.00")
    assert cycle.payment_status == "OVERDUE"
