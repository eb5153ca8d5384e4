from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.auth import OPERATOR_ROLE, AuthUser, get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.core.scheduler import get_today
from app.main import app


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
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=[OPERATOR_ROLE])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_today] = lambda: date(2024, 5, 25)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_subscription(client: TestClient, correlation_id: str) -> dict:
    customer = client.post("/billing/customers", json={"name": "Corr Customer"}, headers={"X-Correlation-Id": correlation_id})
    assert customer.status_code == 201
    plan = client.post(
        "/billing/plans",
        json={
            "name": "Corr Plan",
            "code": "CORR-1",
            "price": "500",
            "products": [{"product_id": str(uuid.uuid4()), "quantity": 2, "unit_price": "0"}],
        },
    )
    assert plan.status_code == 201
    subscription = client.post(
        "/billing/subscriptions",
        json={"customer_id": customer.json()["id"], "plan_id": plan.json()["id"], "start_date": "2024-04-25"},
        headers={"X-Correlation-Id": correlation_id},
    )
    assert subscription.status_code == 201
    return subscription.json()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/billing/customers/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert response.json()["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/billing/customers/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_audit_uses_request_correlation_id(client: TestClient) -> None:
    subscription = _create_subscription(client, "corr-audit-1")

    response = client.post(
        f"/billing/subscriptions/{subscription['id']}/cancel",
        json={"effective_date": "2024-05-10"},
        headers={"X-Correlation-Id": "corr-audit-1"},
    )
    assert response.status_code == 200

    subscription_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "billing.subscription"]
    assert subscription_audits
    assert subscription_audits[-1]["correlation_id"] == "corr-audit-1"


def test_event_envelope_includes_correlation_id(client: TestClient) -> None:
    _create_subscription(client, "corr-event-1")

    created = events.events_of_type("subscription.created")
    assert created
    assert created[-1].get("correlation_id") == "corr-event-1"


def test_job_run_uses_job_correlation_id(client: TestClient) -> None:
    _create_subscription(client, "corr-setup")
    events.published_events.clear()

    response = client.post("/billing/jobs/cycle_renewal/run", headers={"X-Correlation-Id": "corr-job-1"})
    assert response.status_code == 200
    assert response.json()["processed"] == 1
    assert response.headers.get("x-correlation-id") == "corr-job-1"

    renewed = events.events_of_type("cycle.created")
    assert renewed
    assert all(str(item.get("correlation_id")).startswith("job-") for item in renewed)


def test_request_id_header_is_accepted_as_correlation_id(client: TestClient) -> None:
    response = client.get(f"/billing/customers/{uuid.uuid4()}", headers={"X-Request-Id": "lb-77"})
    assert response.headers.get("x-correlation-id") == "lb-77"
    assert response.json()["correlation_id"] == "lb-77"


def test_oversized_correlation_header_is_replaced(client: TestClient) -> None:
    response = client.get(f"/billing/customers/{uuid.uuid4()}", headers={"X-Correlation-Id": "x" * 200})
    header_value = response.headers.get("x-correlation-id")
    assert header_value is not None
    assert header_value.startswith("req-")
    assert response.json()["correlation_id"] == header_value
