"""
Append-only audit log writers.

``log_super_admin_action`` is called by every mutating super-admin route
*after* the mutation has been committed. A failure to write the audit row is
logged server-side and never undoes the mutation.

``create_audit_log`` records user-side security events (login, session
revocation, password reset) on the same table, also best-effort.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.security import AuditLog

logger = logging.getLogger(__name__)

ACTOR_SUPER_ADMIN = "super_admin"
ACTOR_USER = "user"


class AuditActions:
    # Super-admin channel
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    CLINIC_SUSPENDED = "CLINIC_SUSPENDED"
    CLINIC_ACTIVATED = "CLINIC_ACTIVATED"
    CLINIC_UPDATED = "CLINIC_UPDATED"
    USER_UPDATED = "USER_UPDATED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    IMPERSONATION_STARTED = "IMPERSONATION_STARTED"

    # User channel
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    SESSION_REVOKED = "SESSION_REVOKED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"
    CLINIC_SETTINGS_UPDATED = "CLINIC_SETTINGS_UPDATED"


def _write(
    db: Session,
    *,
    actor_id: str | None,
    actor_type: str,
    action: str,
    resource_type: str | None,
    resource_id: str | None,
    metadata: dict[str, Any] | None,
    ip_address: str | None,
    user_agent: str | None,
) -> AuditLog | None:
    entry = AuditLog(
        actor_id=actor_id,
        actor_type=actor_type,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        details=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    try:
        db.add(entry)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to write audit log action=%s actor_type=%s actor_id=%s resource=%s/%s",
            action,
            actor_type,
            actor_id,
            resource_type,
            resource_id,
        )
        return None

    logger.info(
        "Audit action=%s actor_type=%s actor_id=%s resource=%s/%s",
        action,
        actor_type,
        actor_id,
        resource_type,
        resource_id,
    )
    return entry


def log_super_admin_action(
    db: Session,
    super_admin_id: str,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog | None:
    return _write(
        db,
        actor_id=super_admin_id,
        actor_type=ACTOR_SUPER_ADMIN,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def create_audit_log(
    db: Session,
    user_id: str | None,
    action: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> AuditLog | None:
    return _write(
        db,
        actor_id=user_id,
        actor_type=ACTOR_USER,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        metadata=metadata,
        ip_address=ip_address,
        user_agent=user_agent,
    )
