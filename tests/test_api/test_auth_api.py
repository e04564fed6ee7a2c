"""Tests for login / logout on the regular channel."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.main import create_app
from app.models.security import AuditLog, UserSession
from app.security.permissions import Role
from app.settings import Settings


@pytest.fixture
def doctor(api_db, make_clinic, make_user):
    return make_user(api_db, make_clinic(api_db), Role.CLINIC_DOCTOR, email="doc@example.com")


def test_login_sets_session_cookie(client, api_db, doctor, test_password):
    resp = client.post("/auth/login", json={"email": "Doc@Example.com", "password": test_password})

    assert resp.status_code == 200
    assert resp.json()["id"] == doctor.id
    assert "session-token" in resp.cookies
    assert "httponly" in resp.headers["set-cookie"].lower()

    # The cookie jar now carries the session.
    assert client.get("/me").json()["email"] == "doc@example.com"
    assert api_db.scalars(select(AuditLog.action)).all() == ["USER_LOGIN"]


def test_login_with_bad_password_is_401(client, doctor):
    resp = client.post("/auth/login", json={"email": "doc@example.com", "password": "wrong"})

    assert resp.status_code == 401
    assert resp.json() == {"detail": "Invalid credentials"}


def test_login_is_rate_limited(client, doctor):
    # Default "auth" bucket: 5 attempts per minute per client.
    for _ in range(5):
        assert client.post("/auth/login", json={"email": "doc@example.com", "password": "wrong"}).status_code == 401

    resp = client.post("/auth/login", json={"email": "doc@example.com", "password": "wrong"})
    assert resp.status_code == 429
    assert int(resp.headers["retry-after"]) >= 1


def test_rotating_forwarded_for_does_not_reset_the_login_limit(client, doctor):
    for i in range(5):
        client.post(
            "/auth/login",
            json={"email": "doc@example.com", "password": "wrong"},
            headers={"x-forwarded-for": f"198.51.100.{i}"},
        )

    resp = client.post(
        "/auth/login",
        json={"email": "doc@example.com", "password": "wrong"},
        headers={"x-forwarded-for": "198.51.100.99"},
    )
    assert resp.status_code == 429


def test_forwarded_for_is_honoured_behind_a_trusted_proxy(api_session_factory, doctor):
    # TestClient connects from the peer address "testclient".
    app = create_app(Settings(db_url="sqlite://", trusted_proxies=["testclient"]), session_factory=api_session_factory)
    proxied = TestClient(app, raise_server_exceptions=False)

    for _ in range(5):
        proxied.post(
            "/auth/login",
            json={"email": "doc@example.com", "password": "wrong"},
            headers={"x-forwarded-for": "198.51.100.1"},
        )

    other_client = proxied.post(
        "/auth/login",
        json={"email": "doc@example.com", "password": "wrong"},
        headers={"x-forwarded-for": "198.51.100.2"},
    )
    assert other_client.status_code == 401


def test_logout_removes_session(client, api_db, doctor, test_password):
    client.post("/auth/login", json={"email": "doc@example.com", "password": test_password})

    resp = client.post("/auth/logout")

    assert resp.status_code == 200
    api_db.expire_all()
    assert api_db.scalars(select(UserSession)).all() == []
    assert client.get("/me").status_code == 401


def test_logout_without_session_is_a_silent_no_op(client, api_db):
    resp = client.post("/auth/logout")

    assert resp.status_code == 200
    assert api_db.scalars(select(AuditLog)).all() == []
