from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.accounts.models import Organization, User
from app.authz.models import Permission, Role
from app.authz.seed import PERMISSION_CATALOG, seed_access_catalog
from app.core.auth import caller_for_user, get_current_caller, load_user
from app.core.config import get_settings
from app.core.database import Base, get_db
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


def _org(db: Session, name: str) -> Organization:
    organization = Organization(name=name)
    db.add(organization)
    db.commit()
    return organization


def _global_role(db: Session, name: str) -> Role:
    role = db.scalar(select(Role).where(Role.name == name, Role.is_global.is_(True)))
    assert role is not None
    return role


def _user(db: Session, organization: Organization | None, role: Role, email: str) -> User:
    user = User(
        name=email.split("@")[0],
        email=email,
        password_hash="unused",
        organization_id=organization.id if organization is not None else None,
        role_id=role.id,
    )
    db.add(user)
    db.commit()
    return user


def _act_as(acting: dict[str, Caller], db: Session, user: User) -> None:
    loaded = load_user(db, user.id)
    assert loaded is not None
    acting["caller"] = caller_for_user(loaded)


def _permission_ids(db: Session, *keys: tuple[str, str]) -> list[int]:
    ids = []
    for action, subject in keys:
        permission_id = db.scalar(select(Permission.id).where(Permission.action == action, Permission.subject == subject))
        assert permission_id is not None
        ids.append(permission_id)
    return ids


@pytest.fixture()
def acme(db_session: Session) -> Organization:
    return _org(db_session, "Acme")


@pytest.fixture()
def admin(db_session: Session, acme: Organization) -> User:
    return _user(db_session, acme, _global_role(db_session, "ORG_ADMIN"), "admin@example.com")


def test_seed_is_idempotent(db_session: Session) -> None:
    seed_access_catalog(db_session)
    seed_access_catalog(db_session)

    assert len(db_session.scalars(select(Permission)).all()) == len(PERMISSION_CATALOG)
    global_names = db_session.scalars(select(Role.name).where(Role.is_global.is_(True)).order_by(Role.id)).all()
    assert global_names == ["SUPER_ADMIN", "ORG_ADMIN", "EMPLOYEE"]


def test_permission_catalog_is_listed(client: TestClient, db_session: Session, acting: dict[str, Caller], admin: User) -> None:
    _act_as(acting, db_session, admin)

    response = client.get("/api/roles/permissions")

    assert response.status_code == 200
    keys = {row["key"] for row in response.json()}
    assert {"read:Customer", "manage:PipelineStage", "delete:Role"} <= keys


def test_org_admin_sees_global_roles_and_own_roles_only(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
    admin: User,
) -> None:
    globex = _org(db_session, "Globex")
    db_session.add_all(
        [
            Role(name="Closer", is_global=False, organization_id=acme.id),
            Role(name="Scout", is_global=False, organization_id=globex.id),
        ]
    )
    db_session.commit()
    _act_as(acting, db_session, admin)

    listed = client.get("/api/roles", params={"orgId": globex.id})

    assert listed.status_code == 200
    names = [row["name"] for row in listed.json()]
    assert names == ["ORG_ADMIN", "EMPLOYEE", "Closer"]
    org_admin = next(row for row in listed.json() if row["name"] == "ORG_ADMIN")
    assert org_admin["user_count"] == 1


def test_platform_admin_sees_every_role(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
) -> None:
    db_session.add(Role(name="Closer", is_global=False, organization_id=acme.id))
    db_session.commit()
    _act_as(acting, db_session, _user(db_session, None, _global_role(db_session, "SUPER_ADMIN"), "root@example.com"))

    names = {row["name"] for row in client.get("/api/roles").json()}

    assert names == {"SUPER_ADMIN", "ORG_ADMIN", "EMPLOYEE", "Closer"}


def test_create_update_and_delete_custom_role(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
    admin: User,
) -> None:
    _act_as(acting, db_session, admin)

    created = client.post(
        "/api/roles",
        json={
            "name": "Account Manager",
            "description": "Owns key accounts",
            "permission_ids": _permission_ids(db_session, ("read", "Customer"), ("update", "Customer")),
        },
    )
    assert created.status_code == 201, created.text
    role = created.json()
    assert role["organization_id"] == acme.id
    assert role["is_global"] is False
    assert {permission["key"] for permission in role["permissions"]} == {"read:Customer", "update:Customer"}

    updated = client.patch(
        f"/api/roles/{role['id']}",
        json={"description": "Strategic accounts", "permission_ids": _permission_ids(db_session, ("read", "Customer"))},
    )
    assert updated.status_code == 200
    assert updated.json()["description"] == "Strategic accounts"
    assert [permission["key"] for permission in updated.json()["permissions"]] == ["read:Customer"]

    deleted = client.delete(f"/api/roles/{role['id']}")
    assert deleted.status_code == 200
    assert deleted.json() == {"message": "Role deleted successfully"}
    assert db_session.get(Role, role["id"]) is None


def test_reserved_names_and_unknown_permissions_are_rejected(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    admin: User,
) -> None:
    _act_as(acting, db_session, admin)

    reserved = client.post("/api/roles", json={"name": "SUPER_ADMIN"})
    assert reserved.status_code == 400
    assert reserved.json()["code"] == "name_conflict"

    unknown = client.post("/api/roles", json={"name": "Ghost", "permission_ids": [99999]})
    assert unknown.status_code == 400
    assert unknown.json()["details"] == {"permission_ids": [99999]}


def test_role_names_are_trimmed_before_checks(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    admin: User,
) -> None:
    _act_as(acting, db_session, admin)

    assert client.post("/api/roles", json={"name": "   "}).status_code == 422

    padded = client.post("/api/roles", json={"name": "  ORG_ADMIN "})
    assert padded.status_code == 400
    assert padded.json()["code"] == "name_conflict"

    created = client.post("/api/roles", json={"name": "  Closer  "})
    assert created.status_code == 201
    assert created.json()["name"] == "Closer"
    assert client.patch(f"/api/roles/{created.json()['id']}", json={"name": " "}).status_code == 422


def test_global_and_foreign_roles_are_immutable(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    admin: User,
) -> None:
    foreign = Role(name="Scout", is_global=False, organization_id=_org(db_session, "Globex").id)
    db_session.add(foreign)
    db_session.commit()
    _act_as(acting, db_session, admin)

    employee_role = _global_role(db_session, "EMPLOYEE")
    assert client.patch(f"/api/roles/{employee_role.id}", json={"description": "x"}).status_code == 403
    assert client.delete(f"/api/roles/{employee_role.id}").status_code == 403
    assert client.delete(f"/api/roles/{foreign.id}").status_code == 403
    assert client.delete("/api/roles/99999").status_code == 404


def test_role_in_use_cannot_be_deleted(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
    admin: User,
) -> None:
    closer = Role(name="Closer", is_global=False, organization_id=acme.id)
    db_session.add(closer)
    db_session.commit()
    _user(db_session, acme, closer, "closer@example.com")
    _act_as(acting, db_session, admin)

    response = client.delete(f"/api/roles/{closer.id}")

    assert response.status_code == 400
    assert response.json()["code"] == "role_in_use"


def test_org_admin_cannot_create_role_for_another_org(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    admin: User,
) -> None:
    globex = _org(db_session, "Globex")
    _act_as(acting, db_session, admin)

    response = client.post("/api/roles", json={"name": "Intruder", "organization_id": globex.id})

    assert response.status_code == 403


def test_non_admin_cannot_manage_roles(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
) -> None:
    _act_as(acting, db_session, _user(db_session, acme, _global_role(db_session, "EMPLOYEE"), "emp@example.com"))

    response = client.post("/api/roles", json={"name": "Self Promoted"})

    assert response.status_code == 403
    assert response.json()["message"] == "Only admins can manage roles"


def test_reassign_user_role_within_org(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
    admin: User,
) -> None:
    employee = _user(db_session, acme, _global_role(db_session, "EMPLOYEE"), "emp@example.com")
    closer = Role(name="Closer", is_global=False, organization_id=acme.id)
    db_session.add(closer)
    db_session.commit()
    _act_as(acting, db_session, admin)

    response = client.patch("/api/roles/user-role", json={"user_id": employee.id, "role_id": closer.id})

    assert response.status_code == 200
    assert response.json()["role"] == "Closer"
    db_session.expire_all()
    assert db_session.get(User, employee.id).role_id == closer.id


def test_reassign_guards_platform_admin_and_tenants(
    client: TestClient,
    db_session: Session,
    acting: dict[str, Caller],
    acme: Organization,
    admin: User,
) -> None:
    employee = _user(db_session, acme, _global_role(db_session, "EMPLOYEE"), "emp@example.com")
    outsider = _user(db_session, _org(db_session, "Globex"), _global_role(db_session, "EMPLOYEE"), "out@example.com")
    super_role = _global_role(db_session, "SUPER_ADMIN")
    _act_as(acting, db_session, admin)

    promote = client.patch("/api/roles/user-role", json={"user_id": employee.id, "role_id": super_role.id})
    assert promote.status_code == 403

    foreign = client.patch(
        "/api/roles/user-role",
        json={"user_id": outsider.id, "role_id": _global_role(db_session, "ORG_ADMIN").id},
    )
    assert foreign.status_code == 404

    db_session.expire_all()
    assert db_session.get(User, employee.id).role_id == _global_role(db_session, "EMPLOYEE").id
