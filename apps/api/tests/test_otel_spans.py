from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.accounts.models import Organization, User
from app.authz.models import Role
from app.authz.seed import seed_access_catalog
from app.core.auth import caller_for_user, get_current_caller, load_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Customer
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
from app.otel import setup_inmemory_otel
from app.platform.security.context import Caller


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
    seed_access_catalog(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    get_settings.cache_clear()
    reset_rate_limiter()
    yield
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


@pytest.fixture()
def customer(db_session: Session) -> Customer:
    organization = Organization(name="Acme")
    db_session.add(organization)
    db_session.flush()
    role = db_session.scalar(select(Role).where(Role.name == "ORG_ADMIN"))
    assert role is not None
    user = User(name="Ada", email="ada@example.com", password_hash="unused", organization_id=organization.id, role_id=role.id)
    db_session.add(user)
    db_session.flush()
    record = Customer(
        name="Traced Co",
        email="traced@example.com",
        status="NEW",
        organization_id=organization.id,
        created_by_id=user.id,
    )
    db_session.add(record)
    db_session.commit()
    return record


@pytest.fixture()
def client(db_session: Session, customer: Customer) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_caller(request: Request) -> Caller:
        user = load_user(db_session, customer.created_by_id)
        assert user is not None
        caller = caller_for_user(user)
        caller.correlation_id = getattr(request.state, "correlation_id", None)
        return caller

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_caller] = override_get_current_caller
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _status_spans(exporter: InMemorySpanExporter) -> list:
    return [span for span in exporter.get_finished_spans() if span.name == "crm.customer.set_status"]


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.get("/api/pipeline/stages", headers={"X-Correlation-Id": "corr-span-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    assert any(span.attributes.get("correlation_id") == "corr-span-1" for span in spans)


def test_status_change_span_records_transition(
    client: TestClient,
    customer: Customer,
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.patch(
        f"/api/customers/{customer.id}/status",
        json={"status": "QUALIFIED"},
        headers={"X-Correlation-Id": "corr-status-1"},
    )
    assert response.status_code == 200

    spans = _status_spans(span_exporter)
    assert spans
    attributes = spans[-1].attributes
    assert attributes.get("customer_id") == customer.id
    assert attributes.get("to_status") == "QUALIFIED"
    assert attributes.get("correlation_id") == "corr-status-1"


def test_rejected_status_change_marks_span_as_error(
    client: TestClient,
    customer: Customer,
    span_exporter: InMemorySpanExporter,
) -> None:
    response = client.patch(f"/api/customers/{customer.id}/status", json={"status": "ARCHIVED"})
    assert response.status_code == 400

    spans = _status_spans(span_exporter)
    assert spans
    assert spans[-1].status.status_code == StatusCode.ERROR
    assert "to_status" not in spans[-1].attributes
