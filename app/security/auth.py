"""
Regular (clinic-side) session resolver and session lifecycle.

Sessions are opaque random tokens stored server-side in the ``sessions``
table; every request looks the token up again, so deleting the row revokes
access immediately. The super-admin channel has its own resolver in
app/security/super_admin.py and never reads this cookie.
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from fastapi import Request, Response
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.db.base import utcnow
from app.models.security import User, UserSession
from app.security.config import SecurityConfig
from app.security.context import Principal
from app.security.errors import Forbidden, Unauthenticated
from app.security.passwords import verify_password

logger = logging.getLogger(__name__)


def new_token() -> str:
    return secrets.token_urlsafe(32)


def extract_session_token(request: Request, config: SecurityConfig) -> str | None:
    token = request.cookies.get(config.auth.session_cookie)
    if not token:
        logger.info("Missing session cookie (auth required) path=%s method=%s", request.url.path, request.method)
        return None
    return token


def resolve_principal(db: Session, token: str | None) -> Principal:
    """
    Look up the session for ``token`` and build the caller's Principal.

    Role, clinic and external flag are read from the user row on every call,
    so role edits apply on the next request.
    """

    if not token:
        raise Unauthenticated("Unauthorized - Please login")

    row = db.execute(
        select(UserSession)
        .where(UserSession.token == token)
        .options(selectinload(UserSession.user).selectinload(User.clinic))
    ).scalar_one_or_none()

    if row is None:
        logger.info("Unknown session token")
        raise Unauthenticated("Unauthorized - Please login")

    if row.expires_at is not None and row.expires_at <= utcnow():
        logger.info("Expired session session_id=%s user_id=%s", row.id, row.user_id)
        _discard_expired_session(db, row.id)
        raise Unauthenticated("Session expired - Please login again")

    user = row.user
    if user is None or not user.is_active:
        raise Unauthenticated("Invalid or inactive user")

    if user.clinic is not None and not user.clinic.is_active:
        logger.info("Clinic suspended user_id=%s clinic_id=%s", user.id, user.clinic_id)
        raise Forbidden("Clinic is suspended")

    return Principal(
        id=user.id,
        role=user.role,
        clinic_id=user.clinic_id,
        is_external=user.is_external,
        session_id=row.id,
    )


def _discard_expired_session(db: Session, session_id: str) -> None:
    # Best-effort: the request is denied whether or not this succeeds.
    try:
        db.execute(delete(UserSession).where(UserSession.id == session_id))
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Could not delete expired session session_id=%s", session_id, exc_info=True)


def authenticate_user(db: Session, email: str, password: str) -> User | None:
    user = db.execute(select(User).where(User.email == email.strip().lower())).scalar_one_or_none()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def issue_session(
    db: Session,
    user: User,
    ttl: timedelta,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    record_login: bool = True,
) -> UserSession:
    now = utcnow()
    row = UserSession(
        token=new_token(),
        user_id=user.id,
        ip_address=ip_address,
        user_agent=user_agent,
        created_at=now,
        expires_at=now + ttl,
    )
    if record_login:
        user.last_login_at = now
    db.add(row)
    db.commit()
    logger.info("Session issued session_id=%s user_id=%s", row.id, user.id)
    return row


def revoke_session(db: Session, session_id: str) -> bool:
    """
    Delete one session. Idempotent: deleting an already-deleted session is a
    no-op and returns False.
    """

    result = db.execute(delete(UserSession).where(UserSession.id == session_id))
    db.commit()
    removed = bool(result.rowcount)
    logger.info("Session revoke session_id=%s removed=%s", session_id, removed)
    return removed


def revoke_all_sessions(db: Session, user_id: str) -> int:
    result = db.execute(delete(UserSession).where(UserSession.user_id == user_id))
    db.commit()
    return result.rowcount or 0


def set_session_cookie(response: Response, config: SecurityConfig, token: str, ttl: timedelta, secure: bool) -> None:
    response.set_cookie(
        key=config.auth.session_cookie,
        value=token,
        max_age=int(ttl.total_seconds()),
        httponly=True,
        secure=secure,
        samesite="lax",
        path="/",
    )
