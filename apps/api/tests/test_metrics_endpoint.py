from __future__ import annotations

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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["system.metrics.read", OPERATOR_ROLE])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_auth_user
    app.dependency_overrides[get_today] = lambda: date(2024, 6, 3)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_job_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    customer = client.post("/billing/customers", json={"name": "Metrics Customer"})
    assert customer.status_code == 201

    job = client.post("/billing/jobs/automated_collection/run")
    assert job.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "billing_jobs_total" in body
    assert "billing_job_duration_seconds" in body

    assert 'path="/health"' in body
    assert 'path="/billing/jobs/{id}/run"' in body
    assert 'job_type="automated_collection"' in body
    assert "billing_job_http_triggers_total" in body
    assert 'billing_job_http_triggers_total{job_type="automated_collection",status="200"}' in body


def test_metrics_endpoint_requires_permission(client: TestClient) -> None:
    app.dependency_overrides[get_current_user] = lambda: AuthUser(sub="viewer", roles=[OPERATOR_ROLE])

    response = client.get("/metrics")
    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")
    assert response.status_code == 404
