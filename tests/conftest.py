"""
Pytest fixtures for the test suite.

Data-layer tests use an in-memory SQLite engine and a session that rolls back
after each test, so tests do not affect each other.

API tests build a real app with create_app() against a shared in-memory
engine (StaticPool, one connection) so the security dependency, the handler
and the test all see the same rows.
"""
from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import utcnow
from app.main import create_app
from app.models.clinical import Patient
from app.models.security import Clinic, SuperAdmin, SuperAdminSession, User, UserSession
from app.observability.metrics import NullMetricsReader
from app.security.auth import new_token
from app.security.context import Principal
from app.security.passwords import hash_password
from app.security.permissions import Role
from app.settings import Settings

TEST_DB_URL = "sqlite:///:memory:"
TEST_PASSWORD = "correct-horse-battery"

# Cheap bcrypt cost for fixtures only; every built user and operator shares it.
_TEST_HASH = hash_password(TEST_PASSWORD, rounds=4)


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        echo=False,
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    from app.db.base import Base
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def db_session(tables):
    """
    Provide a Session bound to the test DB; roll back after each test.

    Use this in tests that need a database (e.g. data layer tests). The
    transaction is rolled back so the next test gets a clean state.
    """
    connection = tables.connect()
    transaction = connection.begin()
    TestSession = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        class_=Session,
    )
    session = TestSession()
    yield session
    session.close()
    transaction.rollback()
    connection.close()


# ---- builders ----


@pytest.fixture
def make_clinic():
    counter = {"n": 0}

    def _make(db: Session, **kwargs) -> Clinic:
        counter["n"] += 1
        kwargs.setdefault("name", f"Clinic {counter['n']}")
        kwargs.setdefault("clinic_code", f"C{counter['n']:04d}")
        clinic = Clinic(**kwargs)
        db.add(clinic)
        db.commit()
        return clinic

    return _make


@pytest.fixture
def make_user():
    counter = {"n": 0}

    def _make(db: Session, clinic: Clinic | None, role: Role = Role.ADMIN, **kwargs) -> User:
        counter["n"] += 1
        kwargs.setdefault("email", f"user{counter['n']}@example.com")
        kwargs.setdefault("name", f"User {counter['n']}")
        kwargs.setdefault("password_hash", _TEST_HASH)
        kwargs.setdefault("is_external", role is Role.EXTERNAL_DOCTOR)
        user = User(role=role, clinic_id=clinic.id if clinic else None, **kwargs)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_session():
    def _make(db: Session, user: User, ttl: timedelta = timedelta(hours=1)) -> UserSession:
        now = utcnow()
        row = UserSession(token=new_token(), user_id=user.id, created_at=now, expires_at=now + ttl)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def make_patient():
    def _make(db: Session, clinic: Clinic | None, creator: User, **kwargs) -> Patient:
        kwargs.setdefault("first_name", "Pat")
        kwargs.setdefault("last_name", "Ient")
        patient = Patient(clinic_id=clinic.id if clinic else None, created_by_id=creator.id, **kwargs)
        db.add(patient)
        db.commit()
        return patient

    return _make


@pytest.fixture
def make_super_admin():
    counter = {"n": 0}

    def _make(db: Session, **kwargs) -> SuperAdmin:
        counter["n"] += 1
        kwargs.setdefault("email", f"operator{counter['n']}@example.com")
        kwargs.setdefault("name", f"Operator {counter['n']}")
        kwargs.setdefault("password_hash", _TEST_HASH)
        admin = SuperAdmin(**kwargs)
        db.add(admin)
        db.commit()
        return admin

    return _make


@pytest.fixture
def make_super_admin_session():
    def _make(db: Session, admin: SuperAdmin, ttl: timedelta = timedelta(hours=1)) -> SuperAdminSession:
        now = utcnow()
        row = SuperAdminSession(token=new_token(), super_admin_id=admin.id, created_at=now, expires_at=now + ttl)
        db.add(row)
        db.commit()
        return row

    return _make


def principal_for(user: User) -> Principal:
    return Principal(id=user.id, role=user.role, clinic_id=user.clinic_id, is_external=user.is_external)


@pytest.fixture
def as_principal():
    """Attach a principal to a session so the automatic row filters apply."""

    def _attach(db: Session, user: User) -> Principal:
        principal = principal_for(user)
        db.info["principal"] = principal
        return principal

    return _attach


# ---- API ----


@pytest.fixture
def api_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    from app.db.base import Base
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def api_session_factory(api_engine):
    return sessionmaker(bind=api_engine, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture
def api_db(api_session_factory):
    """Unscoped session on the API database, for arranging and inspecting rows."""
    with api_session_factory() as db:
        yield db


@pytest.fixture
def settings():
    return Settings(db_url="sqlite://", cookie_secure=False)


@pytest.fixture
def metrics_reader():
    return NullMetricsReader()


@pytest.fixture
def sent_reset_emails():
    return []


@pytest.fixture
def api_app(settings, api_session_factory, metrics_reader, sent_reset_emails):
    return create_app(
        settings,
        session_factory=api_session_factory,
        metrics_reader=metrics_reader,
        password_reset_notifier=lambda email, token, name: sent_reset_emails.append((email, token)),
    )


@pytest.fixture
def client(api_app):
    """TestClient without lifespan (no demo seed); 500s come back as responses."""
    return TestClient(api_app, raise_server_exceptions=False)


def session_cookie(token: str) -> dict[str, str]:
    return {"cookie": f"session-token={token}"}


def super_admin_cookie(token: str) -> dict[str, str]:
    return {"cookie": f"super-admin-token={token}"}


@pytest.fixture
def user_headers(api_db, make_session):
    """Headers carrying a fresh regular session cookie for ``user``."""

    def _headers(user: User) -> dict[str, str]:
        return session_cookie(make_session(api_db, user).token)

    return _headers


@pytest.fixture
def super_admin_headers(api_db, make_super_admin_session):
    def _headers(admin: SuperAdmin) -> dict[str, str]:
        return super_admin_cookie(make_super_admin_session(api_db, admin).token)

    return _headers


@pytest.fixture
def test_password() -> str:
    return TEST_PASSWORD
