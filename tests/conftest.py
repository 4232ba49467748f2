"""Shared fixtures: in-memory database, API client, users and a demo table."""

from __future__ import annotations

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import get_db, init_db
from app.main import app as fastapi_app
from app.models.data_table import DataTable
from app.models.table_field import TableField
from app.models.user import User
from app.services.import_state import ImportStateStore, get_import_state_store
from app.utils.security import create_access_token, hash_password

TEST_PASSWORD = "secret123"


@pytest.fixture(scope="session")
def password_hash() -> str:
    """Hashing is slow; every test user shares one hash."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store() -> ImportStateStore:
    return ImportStateStore()


@pytest.fixture
def client(session_factory, store):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    fastapi_app.dependency_overrides[get_db] = _get_db
    fastapi_app.dependency_overrides[get_import_state_store] = lambda: store
    yield TestClient(fastapi_app)
    fastapi_app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest.fixture
def users(db, password_hash) -> dict[str, User]:
    created = {}
    for role in ("viewer", "editor", "exporter", "admin"):
        user = User(username=role, password_hash=password_hash, role=role, active=True)
        db.add(user)
        created[role] = user
    db.commit()
    return created


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(user.id, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def editor_headers(users) -> dict[str, str]:
    return auth_headers(users["editor"])


@pytest.fixture
def viewer_headers(users) -> dict[str, str]:
    return auth_headers(users["viewer"])


@pytest.fixture
def admin_headers(users) -> dict[str, str]:
    return auth_headers(users["admin"])


# ---------------------------------------------------------------------------
# Demo table
# ---------------------------------------------------------------------------


@dataclass
class DemoTable:
    id: int
    fields: dict[str, int]

    def key(self, name: str) -> str:
        """Field id as used in ``values`` maps."""
        return str(self.fields[name])


@pytest.fixture
def demo_table(db) -> DemoTable:
    """Table with number A, number B (precision 2), formula SUM, text Name,
    single-select Status and a readonly text column Locked."""
    table = DataTable(name="Demo", revision=0, meta_json={}, export_allowed_roles=[])
    db.add(table)
    db.flush()
    specs = [
        ("A", "number", {}, False),
        ("B", "number", {"precision": 2}, False),
        ("SUM", "formula", {"precision": 2}, False),
        ("Name", "text", {"maxLength": 20}, False),
        ("Status", "single_select", {"options": ["open", "closed"]}, False),
        ("Locked", "text", {}, True),
    ]
    fields = {}
    for name, type_, options, readonly in specs:
        field = TableField(
            table_id=table.id, name=name, type=type_, options_json=options, readonly=readonly
        )
        db.add(field)
        db.flush()
        fields[name] = field.id
    db.commit()
    return DemoTable(id=table.id, fields=fields)


@pytest.fixture
def make_headers():
    return auth_headers
