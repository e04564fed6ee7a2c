"""
Super-admin (operator) sessions.

Lifecycle of one operator session:

    Anonymous --login--> Authenticated(Active) --logout--> LoggedOut
                                  |
                                  +--time--> Expired  (treated exactly like Anonymous)

Tokens are opaque and stored in ``super_admin_sessions``, under their own
cookie. ``resolve_super_admin`` only looks in that table, and the regular
resolver only looks in ``sessions``, so a token from one channel is unknown
to the other.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import Request, Response
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.db.base import utcnow
from app.models.security import SuperAdmin, SuperAdminSession
from app.security.audit import AuditActions, log_super_admin_action
from app.security.auth import new_token
from app.security.config import SecurityConfig
from app.security.context import SuperAdminContext
from app.security.errors import BadRequest, Forbidden, NotFound, Unauthenticated
from app.security.passwords import MIN_PASSWORD_LENGTH, hash_password, verify_password

logger = logging.getLogger(__name__)


def extract_super_admin_token(request: Request, config: SecurityConfig) -> str | None:
    return request.cookies.get(config.auth.super_admin_cookie) or None


def resolve_super_admin(db: Session, token: str | None) -> SuperAdminContext:
    if not token:
        raise Unauthenticated("Unauthorized - Please login as super admin")

    row = db.execute(
        select(SuperAdminSession)
        .where(SuperAdminSession.token == token)
        .options(selectinload(SuperAdminSession.super_admin))
    ).scalar_one_or_none()

    if row is None:
        raise Unauthenticated("Unauthorized - Please login as super admin")

    if row.expires_at <= utcnow():
        logger.info("Expired super admin session session_id=%s", row.id)
        _discard_expired_session(db, row.id)
        raise Unauthenticated("Unauthorized - Please login as super admin")

    admin = row.super_admin
    if admin is None or not admin.is_active:
        raise Unauthenticated("Invalid session")

    return SuperAdminContext(id=admin.id, email=admin.email, name=admin.name, session_id=row.id)


def _discard_expired_session(db: Session, session_id: str) -> None:
    try:
        db.execute(delete(SuperAdminSession).where(SuperAdminSession.id == session_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Could not delete expired super admin session session_id=%s", session_id, exc_info=True)


def login_super_admin(
    db: Session,
    email: str,
    password: str,
    ttl: timedelta,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> tuple[SuperAdmin, SuperAdminSession]:
    """
    Anonymous -> Authenticated. Raises Unauthenticated on bad credentials and
    Forbidden for a deactivated operator account.
    """

    admin = db.execute(select(SuperAdmin).where(SuperAdmin.email == email.strip().lower())).scalar_one_or_none()
    if admin is None:
        logger.warning("Super admin login failed (unknown email)")
        raise Unauthenticated("Invalid credentials")

    if not admin.is_active:
        logger.warning("Super admin login refused (inactive) super_admin_id=%s", admin.id)
        raise Forbidden("Account is inactive")

    if not verify_password(password, admin.password_hash):
        logger.warning("Super admin login failed (bad password) super_admin_id=%s", admin.id)
        raise Unauthenticated("Invalid credentials")

    now = utcnow()
    row = SuperAdminSession(token=new_token(), super_admin_id=admin.id, created_at=now, expires_at=now + ttl)
    admin.last_login_at = now
    db.add(row)
    db.commit()

    log_super_admin_action(db, admin.id, AuditActions.LOGIN, ip_address=ip_address, user_agent=user_agent)
    return admin, row


def logout_super_admin(db: Session, token: str | None) -> bool:
    """
    Authenticated -> LoggedOut. Without a live session this is a silent no-op
    (no audit entry). Returns whether a session was ended.
    """

    if not token:
        return False

    row = db.execute(select(SuperAdminSession).where(SuperAdminSession.token == token)).scalar_one_or_none()
    if row is None:
        return False
    if row.expires_at <= utcnow():
        _discard_expired_session(db, row.id)
        return False

    admin_id = row.super_admin_id
    db.execute(delete(SuperAdminSession).where(SuperAdminSession.id == row.id))
    db.commit()

    log_super_admin_action(db, admin_id, AuditActions.LOGOUT)
    return True


def change_super_admin_password(
    db: Session,
    context: SuperAdminContext,
    current_password: str,
    new_password: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """
    Replace the operator's password after checking the current one. Every
    other session of that operator is ended; the calling session stays.
    """

    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"New password must be at least {MIN_PASSWORD_LENGTH} characters")

    admin = db.get(SuperAdmin, context.id)
    if admin is None:
        raise NotFound("Super admin not found")

    if not verify_password(current_password, admin.password_hash):
        logger.warning("Super admin password change refused (bad current password) super_admin_id=%s", admin.id)
        raise BadRequest("Current password is incorrect")

    admin.password_hash = hash_password(new_password)
    db.execute(
        delete(SuperAdminSession).where(
            SuperAdminSession.super_admin_id == admin.id,
            SuperAdminSession.id != context.session_id,
        )
    )
    db.commit()

    log_super_admin_action(
        db,
        admin.id,
        AuditActions.PASSWORD_CHANGED,
        "SuperAdmin",
        admin.id,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def set_super_admin_cookie(response: Response, config: SecurityConfig, token: str, ttl: timedelta, secure: bool) -> None:
    response.set_cookie(
        key=config.auth.super_admin_cookie,
        value=token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )


def clear_super_admin_cookie(response: Response, config: SecurityConfig) -> None:
    response.delete_cookie(key=config.auth.super_admin_cookie, path="/")
