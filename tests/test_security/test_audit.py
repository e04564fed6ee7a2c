"""Tests for the audit log writers (ORM)."""
from __future__ import annotations

from unittest.mock import patch

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.models.security import AuditLog
from app.security.audit import AuditActions, create_audit_log, log_super_admin_action


def test_super_admin_action_is_recorded(db_session):
    entry = log_super_admin_action(
        db_session,
        "operator-1",
        AuditActions.CLINIC_SUSPENDED,
        "Clinic",
        "clinic-1",
        {"clinicName": "Smile"},
        ip_address="10.0.0.1",
        user_agent="pytest",
    )

    stored = db_session.scalars(select(AuditLog)).one()
    assert stored.id == entry.id
    assert stored.actor_type == "super_admin"
    assert stored.resource_id == "clinic-1"
    assert stored.details == {"clinicName": "Smile"}


def test_user_event_is_recorded(db_session):
    create_audit_log(db_session, "user-1", AuditActions.SESSION_REVOKED, "Session", "s-1")

    stored = db_session.scalars(select(AuditLog)).one()
    assert stored.actor_type == "user"
    assert stored.action == "SESSION_REVOKED"


def test_write_failure_is_logged_not_raised(db_session, caplog):
    with patch.object(db_session, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
        result = log_super_admin_action(db_session, "operator-1", AuditActions.CLINIC_ACTIVATED, "Clinic", "c-1")

    assert result is None
    assert "Failed to write audit log" in caplog.text
