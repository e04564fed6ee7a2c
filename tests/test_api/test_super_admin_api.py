"""Tests for the operator channel routes."""
from __future__ import annotations

import pytest
from sqlalchemy import select

from app.models.security import AuditLog, Clinic, User
from app.observability.metrics import MetricsUnavailable
from app.security.permissions import Role


class RecordingMetricsReader:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str]] = []

    def get_historical_metrics(self, time_range):
        self.calls.append(("historical", time_range))
        if self.fail:
            raise MetricsUnavailable("down")
        return {"timeRange": time_range, "series": [1, 2, 3]}

    def get_real_time_metrics(self, time_range):
        self.calls.append(("real-time", time_range))
        return {"timeRange": time_range, "requests": 7}


@pytest.fixture
def metrics_reader():
    return RecordingMetricsReader()


@pytest.fixture
def operator(api_db, make_super_admin):
    return make_super_admin(api_db, email="ops@example.com")


@pytest.fixture
def clinic(api_db, make_clinic):
    return make_clinic(api_db, name="Smile", subscription_status="ACTIVE")


def _audit_entries(api_db, action: str) -> list[AuditLog]:
    api_db.expire_all()
    return list(api_db.scalars(select(AuditLog).where(AuditLog.action == action)).all())


def test_login_me_logout(client, operator, test_password):
    resp = client.post("/super-admin/auth/login", json={"email": "ops@example.com", "password": test_password})
    assert resp.status_code == 200
    assert "super-admin-token" in resp.cookies
    assert "session-token" not in resp.cookies

    assert client.get("/super-admin/auth/me").json()["email"] == "ops@example.com"

    assert client.post("/super-admin/auth/logout").status_code == 200
    assert client.get("/super-admin/auth/me").status_code == 401


def test_login_with_bad_password(client, operator):
    resp = client.post("/super-admin/auth/login", json={"email": "ops@example.com", "password": "nope"})
    assert resp.status_code == 401


def test_operator_routes_require_operator_cookie(client, api_db, clinic, make_user, user_headers):
    admin = make_user(api_db, clinic, Role.ADMIN)

    assert client.get("/super-admin/clinics").status_code == 401
    # A regular admin session is unknown on this channel.
    assert client.get("/super-admin/clinics", headers=user_headers(admin)).status_code == 401


def test_operator_cookie_is_not_a_regular_session(client, operator, super_admin_headers):
    assert client.get("/me", headers=super_admin_headers(operator)).status_code == 401


def test_suspend_clinic_writes_exactly_one_audit_entry(client, api_db, operator, clinic, super_admin_headers):
    resp = client.post(f"/super-admin/clinics/{clinic.id}/suspend", headers=super_admin_headers(operator))

    assert resp.status_code == 200
    api_db.expire_all()
    stored = api_db.get(Clinic, clinic.id)
    assert stored.is_active is False
    assert stored.subscription_status == "SUSPENDED"

    entries = _audit_entries(api_db, "CLINIC_SUSPENDED")
    assert len(entries) == 1
    assert entries[0].resource_id == clinic.id
    assert entries[0].actor_id == operator.id
    assert entries[0].actor_type == "super_admin"
    assert entries[0].details == {"clinicName": "Smile"}


def test_suspended_clinic_users_are_locked_out(client, api_db, operator, clinic, make_user, user_headers, super_admin_headers):
    headers = user_headers(make_user(api_db, clinic, Role.ADMIN))
    assert client.get("/me", headers=headers).status_code == 200

    client.post(f"/super-admin/clinics/{clinic.id}/suspend", headers=super_admin_headers(operator))

    assert client.get("/me", headers=headers).status_code == 403


def test_activate_clinic(client, api_db, operator, clinic, super_admin_headers):
    headers = super_admin_headers(operator)
    client.post(f"/super-admin/clinics/{clinic.id}/suspend", headers=headers)

    resp = client.post(f"/super-admin/clinics/{clinic.id}/activate", headers=headers)

    assert resp.status_code == 200
    assert resp.json()["is_active"] is True
    assert resp.json()["subscription_status"] == "ACTIVE"
    assert len(_audit_entries(api_db, "CLINIC_ACTIVATED")) == 1


def test_suspend_unknown_clinic_is_404(client, api_db, operator, super_admin_headers):
    resp = client.post("/super-admin/clinics/missing/suspend", headers=super_admin_headers(operator))

    assert resp.status_code == 404
    assert _audit_entries(api_db, "CLINIC_SUSPENDED") == []


def test_patch_clinic_records_updates(client, api_db, operator, clinic, super_admin_headers):
    resp = client.patch(
        f"/super-admin/clinics/{clinic.id}", json={"plan_type": "pro"}, headers=super_admin_headers(operator)
    )

    assert resp.status_code == 200
    assert resp.json()["plan_type"] == "pro"
    assert _audit_entries(api_db, "CLINIC_UPDATED")[0].details == {"updates": {"plan_type": "pro"}}


def test_patch_clinic_rejects_unknown_status(client, operator, clinic, super_admin_headers):
    resp = client.patch(
        f"/super-admin/clinics/{clinic.id}", json={"subscription_status": "GOLD"}, headers=super_admin_headers(operator)
    )
    assert resp.status_code == 422


def test_patch_clinic_rejects_null_for_required_fields(client, api_db, operator, clinic, super_admin_headers):
    headers = super_admin_headers(operator)

    for field in ("is_active", "subscription_status", "plan_type"):
        resp = client.patch(f"/super-admin/clinics/{clinic.id}", json={field: None}, headers=headers)
        assert resp.status_code == 422, field

    api_db.expire_all()
    stored = api_db.get(Clinic, clinic.id)
    assert (stored.is_active, stored.subscription_status) == (True, "ACTIVE")
    assert _audit_entries(api_db, "CLINIC_UPDATED") == []


def test_list_and_detail_see_all_clinics(client, api_db, operator, clinic, make_clinic, make_user, make_patient, super_admin_headers):
    other = make_clinic(api_db, name="Other")
    user = make_user(api_db, other, Role.ADMIN)
    make_patient(api_db, other, user)
    headers = super_admin_headers(operator)

    listed = client.get("/super-admin/clinics", headers=headers).json()
    assert {c["id"] for c in listed} == {clinic.id, other.id}

    detail = client.get(f"/super-admin/clinics/{other.id}", headers=headers).json()
    assert (detail["user_count"], detail["patient_count"], detail["invoice_count"]) == (1, 1, 0)


def test_audit_log_listing(client, operator, clinic, super_admin_headers):
    headers = super_admin_headers(operator)
    client.post(f"/super-admin/clinics/{clinic.id}/suspend", headers=headers)

    resp = client.get("/super-admin/audit-logs", params={"action": "CLINIC_SUSPENDED"}, headers=headers)

    assert resp.status_code == 200
    assert [e["metadata"] for e in resp.json()] == [{"clinicName": "Smile"}]


def test_performance_metrics(client, operator, metrics_reader, super_admin_headers):
    resp = client.get("/super-admin/performance/metrics", params={"timeRange": "7d"}, headers=super_admin_headers(operator))

    assert resp.status_code == 200
    assert resp.json()["historical"]["series"] == [1, 2, 3]
    assert metrics_reader.calls == [("historical", "7d"), ("real-time", "24h")]


def test_performance_metrics_rejects_bad_range(client, operator, super_admin_headers):
    resp = client.get("/super-admin/performance/metrics", params={"timeRange": "5y"}, headers=super_admin_headers(operator))
    assert resp.status_code == 400


def test_performance_metrics_failure_is_generic_500(client, operator, metrics_reader, super_admin_headers):
    metrics_reader.fail = True

    resp = client.get("/super-admin/performance/metrics", headers=super_admin_headers(operator))

    assert resp.status_code == 500
    assert resp.json() == {"detail": "Failed to fetch performance metrics"}


# ---- users ----


@pytest.fixture
def staff(api_db, clinic, make_user):
    return make_user(api_db, clinic, Role.STAFF, email="sara@smile.example", name="Sara")


def test_user_listing_spans_clinics_and_filters(client, api_db, operator, clinic, staff, make_clinic, make_user, super_admin_headers):
    other = make_user(api_db, make_clinic(api_db, name="Other"), Role.ADMIN, name="Otto")
    headers = super_admin_headers(operator)

    everyone = client.get("/super-admin/users", headers=headers).json()
    assert {u["id"] for u in everyone} == {staff.id, other.id}

    admins = client.get("/super-admin/users", params={"role": "ADMIN"}, headers=headers).json()
    assert [u["id"] for u in admins] == [other.id]

    by_clinic_name = client.get("/super-admin/users", params={"search": "smile"}, headers=headers).json()
    assert [u["id"] for u in by_clinic_name] == [staff.id]
    assert by_clinic_name[0]["clinic"]["name"] == "Smile"


def test_user_detail(client, operator, staff, super_admin_headers):
    headers = super_admin_headers(operator)

    resp = client.get(f"/super-admin/users/{staff.id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["email"] == "sara@smile.example"

    assert client.get("/super-admin/users/missing", headers=headers).status_code == 404


def test_user_routes_need_operator_session(client, api_db, staff, make_user, clinic, user_headers):
    admin = make_user(api_db, clinic, Role.ADMIN)

    assert client.get("/super-admin/users", headers=user_headers(admin)).status_code == 401
    assert client.patch(f"/super-admin/users/{staff.id}", json={"role": "ADMIN"}).status_code == 401


def test_role_change_applies_on_the_users_next_request(client, api_db, operator, staff, user_headers, super_admin_headers):
    headers = user_headers(staff)
    assert client.put("/clinic", json={"name": "Smile Renamed"}, headers=headers).status_code == 403

    resp = client.patch(f"/super-admin/users/{staff.id}", json={"role": "ADMIN"}, headers=super_admin_headers(operator))
    assert resp.status_code == 200
    assert resp.json()["role"] == "ADMIN"

    # Same session cookie, no re-login.
    assert client.put("/clinic", json={"name": "Smile Renamed"}, headers=headers).status_code == 200

    entries = _audit_entries(api_db, "USER_UPDATED")
    assert len(entries) == 1
    assert entries[0].resource_type == "User"
    assert entries[0].resource_id == staff.id
    assert entries[0].details == {"updates": {"role": "ADMIN"}}


def test_password_change_by_operator_ends_user_sessions_and_is_redacted(client, api_db, operator, staff, user_headers, super_admin_headers):
    headers = user_headers(staff)

    resp = client.patch(
        f"/super-admin/users/{staff.id}", json={"password": "brand-new-secret"}, headers=super_admin_headers(operator)
    )

    assert resp.status_code == 200
    assert client.get("/me", headers=headers).status_code == 401
    login = client.post("/auth/login", json={"email": "sara@smile.example", "password": "brand-new-secret"})
    assert login.status_code == 200
    assert _audit_entries(api_db, "USER_UPDATED")[0].details == {"updates": {"password": "CHANGED"}}


def test_user_update_validation(client, api_db, operator, clinic, staff, make_user, super_admin_headers):
    make_user(api_db, clinic, Role.ADMIN, email="taken@smile.example")
    headers = super_admin_headers(operator)
    url = f"/super-admin/users/{staff.id}"

    assert client.patch(url, json={"email": "Taken@Smile.example"}, headers=headers).status_code == 400
    assert client.patch(url, json={"password": "short"}, headers=headers).status_code == 400
    assert client.patch(url, json={"clinic_id": "missing"}, headers=headers).status_code == 404
    assert client.patch(url, json={"role": None}, headers=headers).status_code == 422
    assert client.patch(url, json={"role": "OWNER"}, headers=headers).status_code == 422
    assert _audit_entries(api_db, "USER_UPDATED") == []


def test_user_can_be_moved_to_another_clinic(client, api_db, operator, staff, make_clinic, make_patient, make_user, user_headers, super_admin_headers):
    target = make_clinic(api_db, name="Target")
    patient = make_patient(api_db, target, make_user(api_db, target, Role.ADMIN))
    headers = user_headers(staff)
    assert client.get(f"/patients/{patient.id}", headers=headers).status_code == 404

    resp = client.patch(f"/super-admin/users/{staff.id}", json={"clinic_id": target.id}, headers=super_admin_headers(operator))

    assert resp.status_code == 200
    assert resp.json()["clinic"]["name"] == "Target"
    assert client.get(f"/patients/{patient.id}", headers=headers).status_code == 200


# ---- impersonation ----


def test_impersonation_opens_a_short_scoped_session(client, api_db, operator, clinic, make_user, make_clinic, make_patient, super_admin_headers):
    admin = make_user(api_db, clinic, Role.ADMIN, email="boss@smile.example")
    own = make_patient(api_db, clinic, admin)
    other_clinic = make_clinic(api_db, name="Elsewhere")
    foreign = make_patient(api_db, other_clinic, make_user(api_db, other_clinic, Role.ADMIN))

    resp = client.post(f"/super-admin/clinics/{clinic.id}/impersonate", headers=super_admin_headers(operator))

    assert resp.status_code == 200
    body = resp.json()
    assert body["user"]["email"] == "boss@smile.example"
    token = resp.cookies["session-token"]
    cookie = {"cookie": f"session-token={token}"}
    assert client.get(f"/patients/{own.id}", headers=cookie).status_code == 200
    assert client.get(f"/patients/{foreign.id}", headers=cookie).status_code == 404

    entries = _audit_entries(api_db, "IMPERSONATION_STARTED")
    assert len(entries) == 1
    assert entries[0].actor_id == operator.id
    assert entries[0].details == {
        "clinicName": "Smile",
        "targetUserId": admin.id,
        "targetUserEmail": "boss@smile.example",
    }
    api_db.expire_all()
    assert api_db.get(User, admin.id).last_login_at is None


def test_impersonation_without_clinic_admin_is_404(client, api_db, operator, clinic, staff, super_admin_headers):
    resp = client.post(f"/super-admin/clinics/{clinic.id}/impersonate", headers=super_admin_headers(operator))

    assert resp.status_code == 404
    assert _audit_entries(api_db, "IMPERSONATION_STARTED") == []


# ---- operator password ----


def test_operator_password_change(client, api_db, operator, test_password, super_admin_headers):
    headers = super_admin_headers(operator)
    other_device = super_admin_headers(operator)

    resp = client.post(
        "/super-admin/settings/password",
        json={"current_password": test_password, "new_password": "operator-secret-2"},
        headers=headers,
    )

    assert resp.status_code == 200
    assert client.get("/super-admin/auth/me", headers=headers).status_code == 200
    assert client.get("/super-admin/auth/me", headers=other_device).status_code == 401

    entries = _audit_entries(api_db, "PASSWORD_CHANGED")
    assert len(entries) == 1
    assert (entries[0].resource_type, entries[0].resource_id) == ("SuperAdmin", operator.id)

    relogin = client.post("/super-admin/auth/login", json={"email": "ops@example.com", "password": "operator-secret-2"})
    assert relogin.status_code == 200


def test_operator_password_change_checks_current_and_length(client, api_db, operator, test_password, super_admin_headers):
    headers = super_admin_headers(operator)

    wrong = client.post(
        "/super-admin/settings/password",
        json={"current_password": "not-it", "new_password": "operator-secret-2"},
        headers=headers,
    )
    short = client.post(
        "/super-admin/settings/password",
        json={"current_password": test_password, "new_password": "short"},
        headers=headers,
    )

    assert wrong.status_code == 400
    assert wrong.json() == {"detail": "Current password is incorrect"}
    assert short.status_code == 400
    assert _audit_entries(api_db, "PASSWORD_CHANGED") == []
