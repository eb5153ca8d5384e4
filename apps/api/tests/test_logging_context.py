from __future__ import annotations

import logging
import uuid
from collections.abc import Generator
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", roles=[OPERATOR_ROLE])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_today] = lambda: date(2024, 6, 13)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.get(f"/billing/customers/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/billing/customers/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_logs_include_job_context_and_correlation_id(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post("/billing/jobs/late_fee_escalation/run", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 200

    job_records = [record for record in caplog.records if record.name == "app.billing.jobs"]
    assert {record.getMessage() for record in job_records} >= {"job.started", "job.finished"}
    job_ids = {getattr(record, "job_id", None) for record in job_records}
    assert len(job_ids) == 1
    job_id = job_ids.pop()
    assert all(
        getattr(record, "job_type", None) == "late_fee_escalation"
        and getattr(record, "correlation_id", None) == f"job-{job_id}"
        for record in job_records
    )
    finished = [record for record in job_records if record.getMessage() == "job.finished"]
    assert getattr(finished[0], "status", None) == "Succeeded"
    assert getattr(finished[0], "processed", None) == 0


def test_job_run_request_log_carries_job_type(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post("/billing/jobs/cycle_renewal/run", headers={"X-Correlation-Id": "run-1"})
    assert response.status_code == 200

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert any(
        getattr(record, "path", None) == "/billing/jobs/{id}/run"
        and getattr(record, "job_type", None) == "cycle_renewal"
        and getattr(record, "correlation_id", None) == "run-1"
        for record in records
    )


def test_entity_request_log_carries_billing_ids(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    customer_id = uuid.uuid4()

    response = client.get(f"/billing/customers/{customer_id}")
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert any(getattr(record, "customer_id", None) == str(customer_id) for record in records)
