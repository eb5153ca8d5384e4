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
from app.business.cycles.balances import days_overdue, recompute_cycle_balances, resolve_payment_status
from app.business.cycles.models import SubscriptionCycle
from app.business.cycles.payments import CyclePaymentService
from app.business.cycles.schemas import PaymentCreate
from app.business.subscription.schemas import CustomerCreate, PlanCreate, PlanProductCreate, SubscriptionCreate
from app.business.subscription.service import SubscriptionService
from app.core.database import Base
from app.core.errors import NotFoundError


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


def _seed(session: Session) -> tuple[uuid.UUID, uuid.UUID]:
    service = SubscriptionService()
    customer = service.create_customer(session, CustomerCreate(name="Paying Customer", zone_id=uuid.uuid4()))
    plan = service.create_plan(
        session,
        PlanCreate(
            name="Water 6",
            code="PAY-6",
            price=Decimal("1000"),
            products=[PlanProductCreate(product_id=uuid.uuid4(), quantity=6, unit_price=Decimal("0"))],
        ),
    )
    subscription = service.create_subscription(
        session, SubscriptionCreate(customer_id=customer.id, plan_id=plan.id, start_date=date(2024, 4, 25))
    )
    cycle_id = session.scalar(select(SubscriptionCycle.id).where(SubscriptionCycle.subscription_id == subscription.id))
    assert cycle_id is not None
    return customer.id, cycle_id


def _cycle(**values: object) -> SubscriptionCycle:
    defaults: dict[str, object] = {
        "total_amount": Decimal("1000"),
        "paid_amount": Decimal("0"),
        "is_overdue": False,
        "payment_due_date": date(2024, 6, 3),
    }
    defaults.update(values)
    return recompute_cycle_balances(SubscriptionCycle(**defaults))


def test_status_precedence() -> None:
    assert resolve_payment_status(_cycle()) == "PENDING"
    assert resolve_payment_status(_cycle(paid_amount=Decimal("300"))) == "PARTIAL"
    assert resolve_payment_status(_cycle(paid_amount=Decimal("300"), is_overdue=True)) == "OVERDUE"
    assert resolve_payment_status(_cycle(paid_amount=Decimal("1000"), is_overdue=True)) == "PAID"
    assert resolve_payment_status(_cycle(paid_amount=Decimal("1100"))) == "CREDITED"
    assert resolve_payment_status(_cycle(total_amount=Decimal("0"))) == "PENDING"


def test_days_overdue_counts_only_unpaid_cycles() -> None:
    assert days_overdue(_cycle(), date(2024, 6, 10)) == 7
    assert days_overdue(_cycle(), date(2024, 6, 1)) == 0
    assert days_overdue(_cycle(paid_amount=Decimal("1000")), date(2024, 6, 10)) == 0


def test_payments_move_cycle_through_partial_paid_and_credited(db_session: Session) -> None:
    _customer_id, cycle_id = _seed(db_session)
    service = CyclePaymentService()

    partial = service.apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("400"), payment_date=date(2024, 5, 30)))
    assert partial.payment_status == "PARTIAL"
    assert partial.pending_balance == Decimal("600.00")

    paid = service.apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("600"), payment_date=date(2024, 6, 1)))
    assert paid.payment_status == "PAID"
    assert paid.pending_balance == Decimal("0.00")

    credited = service.apply_payment(
        db_session,
        cycle_id,
        PaymentCreate(amount=Decimal("50"), payment_date=date(2024, 6, 2), payment_method="TRANSFER", reference="TRX-9"),
    )
    assert credited.payment_status == "CREDITED"
    assert credited.credit_balance == Decimal("50.00")

    payments = service.list_payments(db_session, cycle_id)
    assert [item.amount for item in payments] == [Decimal("400.00"), Decimal("600.00"), Decimal("50.00")]
    assert len(events.events_of_type("cycle.payment_applied")) == 3


def test_recalculate_rebuilds_paid_amount_from_payment_rows(db_session: Session) -> None:
    _customer_id, cycle_id = _seed(db_session)
    service = CyclePaymentService()
    service.apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("250"), payment_date=date(2024, 5, 30)))

    cycle = db_session.get(SubscriptionCycle, cycle_id)
    assert cycle is not None
    cycle.paid_amount = Decimal("0")
    db_session.commit()

    rebuilt = service.recalculate_balances(db_session, cycle_id)
    assert rebuilt.paid_amount == Decimal("250.00")
    assert rebuilt.pending_balance == Decimal("750.00")
    assert rebuilt.payment_status == "PARTIAL"


def test_payment_semaphore(db_session: Session) -> None:
    customer_id, cycle_id = _seed(db_session)
    service = CyclePaymentService()
    lonely = SubscriptionService().create_customer(db_session, CustomerCreate(name="No Cycles"))

    assert service.customer_payment_semaphore(db_session, lonely.id, date(2024, 6, 10)).semaphore == "NONE"

    yellow = service.customer_payment_semaphore(db_session, customer_id, date(2024, 6, 10))
    assert yellow.semaphore == "YELLOW"
    assert yellow.max_days_overdue == 7
    assert yellow.pending_cycles == 1

    red = service.customer_payment_semaphore(db_session, customer_id, date(2024, 6, 11))
    assert red.semaphore == "RED"
    assert red.max_days_overdue == 8

    service.apply_payment(db_session, cycle_id, PaymentCreate(amount=Decimal("1000"), payment_date=date(2024, 6, 11)))
    green = service.customer_payment_semaphore(db_session, customer_id, date(2024, 6, 11))
    assert green.semaphore == "GREEN"
    assert green.pending_cycles == 0


def test_semaphore_for_unknown_customer_is_not_found(db_session: Session) -> None:
    with pytest.raises(NotFoundError):
        CyclePaymentService().customer_payment_semaphore(db_session, uuid.uuid4(), date(2024, 6, 10))
