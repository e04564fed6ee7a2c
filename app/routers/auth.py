from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.db.base import utcnow
from app.db.session import get_db
from app.models.security import PasswordResetToken, User, UserSession
from app.schemas.security import ForgotPasswordIn, LoginIn, MessageOut, ResetPasswordIn, UserOut
from app.security.audit import AuditActions, create_audit_log
from app.security.auth import authenticate_user, issue_session, revoke_all_sessions, revoke_session, set_session_cookie
from app.security.config import SecurityConfig
from app.security.dependencies import get_app_settings, get_security_config, request_origin
from app.security.errors import BadRequest, Forbidden, NotFound, Unauthenticated
from app.security.passwords import MIN_PASSWORD_LENGTH, hash_password
from app.security.rate_limit import rate_limit
from app.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_RESET_MESSAGE = "If an account exists with this email, you will receive a password reset link."
_RESET_EXPIRED = "This reset link has expired. Please request a new one."

@router.post("/login", response_model=UserOut, dependencies=[Depends(rate_limit("auth"))])
def login(
    body: LoginIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_app_settings),
) -> User:
    user = authenticate_user(db, body.email, body.password)
    if user is None or not user.is_active:
        logger.info("Login failed path=%s", request.url.path)
        raise Unauthenticated("Invalid credentials")
    if user.clinic is not None and not user.clinic.is_active:
        raise Forbidden("Clinic is suspended")

    client_id, user_agent = request_origin(request)
    ttl = timedelta(hours=settings.session_ttl_hours)
    session = issue_session(db, user, ttl, ip_address=client_id, user_agent=user_agent)

    set_session_cookie(response, config, session.token, ttl, settings.cookie_secure)
    create_audit_log(db, user.id, AuditActions.USER_LOGIN, ip_address=client_id, user_agent=user_agent)
    return user


@router.post("/logout", response_model=MessageOut)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    config: SecurityConfig = Depends(get_security_config),
) -> MessageOut:
    # Public route: logging out without a live session is a silent no-op.
    token = request.cookies.get(config.auth.session_cookie)
    if token:
        row = db.execute(select(UserSession).where(UserSession.token == token)).scalar_one_or_none()
        if row is not None:
            user_id = row.user_id
            revoke_session(db, row.id)
            create_audit_log(db, user_id, AuditActions.USER_LOGOUT)
    response.delete_cookie(key=config.auth.session_cookie, path="/")
    return MessageOut(message="Logged out")


@router.post(
    "/forgot-password",
    response_model=MessageOut,
    dependencies=[
        Depends(
            rate_limit(
                "password-reset-request",
                message="Too many password reset requests. Please try again in {minutes} minutes.",
            )
        )
    ],
)
def forgot_password(
    body: ForgotPasswordIn,
    request: Request,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> MessageOut:
    email = body.email.strip().lower()
    user = db.execute(select(User).where(User.email == email)).scalar_one_or_none()

    # Same answer whether or not the account exists (no email enumeration).
    if user is None:
        return MessageOut(message=_RESET_MESSAGE)

    db.execute(delete(PasswordResetToken).where(PasswordResetToken.email == email))
    token = PasswordResetToken(
        email=email,
        token=secrets.token_hex(32),
        expires_at=utcnow() + timedelta(minutes=settings.password_reset_ttl_minutes),
    )
    db.add(token)
    db.commit()

    notifier = request.app.state.password_reset_notifier
    notifier(email, token.token, user.name)

    client_id, user_agent = request_origin(request)
    create_audit_log(
        db, user.id, AuditActions.PASSWORD_RESET_REQUESTED, ip_address=client_id, user_agent=user_agent
    )
    return MessageOut(message=_RESET_MESSAGE)


def _load_live_reset_token(db: Session, token: str) -> PasswordResetToken:
    row = db.execute(select(PasswordResetToken).where(PasswordResetToken.token == token)).scalar_one_or_none()
    if row is None:
        raise NotFound("Invalid reset token")

    if row.expires_at <= utcnow():
        db.execute(delete(PasswordResetToken).where(PasswordResetToken.id == row.id))
        db.commit()
        logger.info("Expired password reset token removed token_id=%s", row.id)
        raise BadRequest(_RESET_EXPIRED)

    return row


@router.get("/verify-reset-token")
def verify_reset_token(
    token: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> dict[str, object]:
    if not token:
        raise BadRequest("Token is required")
    row = _load_live_reset_token(db, token)
    return {"valid": True, "email": row.email}


@router.post("/reset-password", response_model=MessageOut)
def reset_password(
    body: ResetPasswordIn,
    request: Request,
    db: Session = Depends(get_db),
) -> MessageOut:
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    row = _load_live_reset_token(db, body.token)

    user = db.execute(select(User).where(User.email == row.email)).scalar_one_or_none()
    if user is None:
        db.execute(delete(PasswordResetToken).where(PasswordResetToken.id == row.id))
        db.commit()
        raise NotFound("Invalid reset token")

    user.password_hash = hash_password(body.password)
    db.execute(delete(PasswordResetToken).where(PasswordResetToken.id == row.id))
    db.commit()

    # A reset invalidates every existing login.
    revoke_all_sessions(db, user.id)

    client_id, user_agent = request_origin(request)
    create_audit_log(
        db, user.id, AuditActions.PASSWORD_RESET_COMPLETED, ip_address=client_id, user_agent=user_agent
    )
    return MessageOut(message="Password has been reset successfully")
