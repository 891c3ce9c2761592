from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.accounts.models import Organization, User
from app.authz.models import Role
from app.authz.seed import seed_access_catalog
from app.core.auth import caller_for_user, get_current_caller, load_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.crm.models import Customer, Interaction
from app.main import app
from app.middleware.rate_limit import reset_rate_limiter
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
def acting() -> dict[str, Caller]:
    return {}


@pytest.fixture()
def client(db_session: Session, acting: dict[str, Caller]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_caller(request: Request) -> Caller:
        return acting["caller"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_caller] = override_get_current_caller
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _user(db: Session, organization: Organization, role_name: str, email: str) -> User:
    role = db.scalar(select(Role).where(Role.name == role_name, Role.is_global.is_(True)))
    assert role is not None
    user = User(name=email.split("@")[0], email=email, password_hash="unused", organization_id=organization.id, role_id=role.id)
    db.add(user)
    db.commit()
    return user


def _act_as(acting: dict[str, Caller], db: Session, user: User) -> None:
    loaded = load_user(db, user.id)
    assert loaded is not None
    acting["caller"] = caller_for_user(loaded)


@pytest.fixture()
def org(db_session: Session) -> Organization:
    organization = Organization(name="Acme")
    db_session.add(organization)
    db_session.commit()
    return organization


@pytest.fixture()
def owner(db_session: Session, org: Organization) -> User:
    return _user(db_session, org, "EMPLOYEE", "owner@example.com")


@pytest.fixture()
def customer_id(db_session: Session, org: Organization, owner: User) -> int:
    customer = Customer(
        name="Talkative Co",
        email="talk@example.com",
        status="NEW",
        organization_id=org.id,
        created_by_id=owner.id,
        handlers=[owner],
    )
    db_session.add(customer)
    db_session.commit()
    return customer.id


def test_log_and_list_interactions_newest_first(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    owner: User,
    customer_id: int,
) -> None:
    _act_as(acting, db_session, owner)

    older = client.post(
        "/api/interactions",
        json={"customer_id": customer_id, "type": "email", "details": "Sent deck", "date": "2026-01-05T10:00:00Z"},
    )
    newer = client.post(
        "/api/interactions",
        json={"customer_id": customer_id, "type": "meeting", "date": "2026-02-01T15:30:00Z"},
    )
    assert older.status_code == newer.status_code == 201
    assert older.json()["user_id"] == owner.id

    listed = client.get(f"/api/interactions/customer/{customer_id}")
    assert listed.status_code == 200
    assert [row["type"] for row in listed.json()] == ["meeting", "email"]
    assert listed.json()[0]["user"]["email"] == "owner@example.com"


def test_interactions_follow_customer_visibility(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    org: Organization,
    customer_id: int,
) -> None:
    _act_as(acting, db_session, _user(db_session, org, "EMPLOYEE", "peer@example.com"))

    created = client.post("/api/interactions", json={"customer_id": customer_id, "type": "call"})
    assert created.status_code == 404
    assert client.get(f"/api/interactions/customer/{customer_id}").status_code == 404

    other_org = Organization(name="Globex")
    db_session.add(other_org)
    db_session.commit()
    _act_as(acting, db_session, _user(db_session, other_org, "ORG_ADMIN", "globex@example.com"))
    assert client.get(f"/api/interactions/customer/{customer_id}").status_code == 404


def test_delete_interaction(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    org: Organization,
    owner: User,
    customer_id: int,
) -> None:
    _act_as(acting, db_session, owner)
    interaction = client.post("/api/interactions", json={"customer_id": customer_id, "type": "call"}).json()

    _act_as(acting, db_session, _user(db_session, org, "EMPLOYEE", "peer@example.com"))
    hidden = client.delete(f"/api/interactions/{interaction['id']}")
    assert hidden.status_code == 404
    assert hidden.json()["message"] == "Interaction not found or unauthorized"

    _act_as(acting, db_session, owner)
    removed = client.delete(f"/api/interactions/{interaction['id']}")
    assert removed.status_code == 200
    assert removed.json() == {"message": "Interaction deleted"}
    assert db_session.get(Interaction, interaction["id"]) is None
    assert client.delete(f"/api/interactions/{interaction['id']}").status_code == 404
