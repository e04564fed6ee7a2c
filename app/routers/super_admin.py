"""
Operator (super-admin) routes.

Everything here runs on the super-admin channel: the global security
dependency resolves the ``super-admin-token`` cookie and publishes a
``SuperAdminContext``; no clinic principal is attached, so queries are not
tenant-scoped. Mutations commit first and audit second.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from app.db.session import get_db
from app.models.clinical import Invoice, Patient
from app.models.security import AuditLog, Clinic, SuperAdmin, User
from app.observability.metrics import TIME_RANGES, MetricsReader, MetricsUnavailable
from app.schemas.security import (
    AuditLogOut,
    ChangePasswordIn,
    ClinicAdminUpdateIn,
    ClinicDetailOut,
    ClinicOut,
    ClinicRefOut,
    ImpersonationOut,
    LoginIn,
    MessageOut,
    SuperAdminOut,
    SuperAdminUserOut,
    SuperAdminUserUpdateIn,
    UserOut,
)
from app.security.audit import AuditActions, log_super_admin_action
from app.security.auth import issue_session, revoke_all_sessions, set_session_cookie
from app.security.config import SecurityConfig
from app.security.context import SuperAdminContext
from app.security.decorators import with_super_admin_auth
from app.security.dependencies import get_app_settings, get_security_config, get_super_admin, request_origin
from app.security.errors import AuthorizationError, BadRequest, NotFound
from app.security.passwords import MIN_PASSWORD_LENGTH, hash_password
from app.security.permissions import Role
from app.security.rate_limit import rate_limit
from app.security.super_admin import (
    change_super_admin_password,
    clear_super_admin_cookie,
    extract_super_admin_token,
    login_super_admin,
    logout_super_admin,
    set_super_admin_cookie,
)
from app.settings import Settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/super-admin", tags=["super-admin"])

RECENT_ACTIVITY_LIMIT = 10


# ---- auth ----


@router.post("/auth/login", response_model=SuperAdminOut, dependencies=[Depends(rate_limit("auth"))])
def login(
    body: LoginIn,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_app_settings),
) -> SuperAdmin:
    client_id, user_agent = request_origin(request)
    ttl = timedelta(hours=settings.super_admin_session_ttl_hours)
    admin, row = login_super_admin(db, body.email, body.password, ttl, ip_address=client_id, user_agent=user_agent)
    set_super_admin_cookie(response, config, row.token, ttl, settings.cookie_secure)
    return admin


@router.post("/auth/logout", response_model=MessageOut)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    config: SecurityConfig = Depends(get_security_config),
) -> MessageOut:
    logout_super_admin(db, extract_super_admin_token(request, config))
    clear_super_admin_cookie(response, config)
    return MessageOut(message="Logged out")


@router.get("/auth/me", response_model=SuperAdminOut)
@with_super_admin_auth()
def me(
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> SuperAdmin:
    admin = db.get(SuperAdmin, super_admin.id)
    if admin is None:
        raise NotFound("Super admin not found")
    return admin


# ---- clinics ----


def _load_clinic(db: Session, clinic_id: str) -> Clinic:
    clinic = db.get(Clinic, clinic_id)
    if clinic is None:
        raise NotFound("Clinic not found")
    return clinic


def _count(db: Session, model: type, clinic_id: str) -> int:
    return db.execute(select(func.count()).select_from(model).where(model.clinic_id == clinic_id)).scalar_one()


@router.get("/clinics", response_model=list[ClinicOut])
@with_super_admin_auth()
def list_clinics(
    status: str | None = Query(default=None),
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> list[Clinic]:
    stmt = select(Clinic).order_by(Clinic.created_at.desc())
    if status:
        stmt = stmt.where(Clinic.subscription_status == status.upper())
    return list(db.execute(stmt).scalars().all())


@router.get("/clinics/{clinic_id}", response_model=ClinicDetailOut, response_model_by_alias=True)
@with_super_admin_auth()
def get_clinic(
    clinic_id: str,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> ClinicDetailOut:
    clinic = _load_clinic(db, clinic_id)

    clinic_user_ids = select(User.id).where(User.clinic_id == clinic.id)
    recent = (
        db.execute(
            select(AuditLog)
            .where(or_(AuditLog.resource_id == clinic.id, AuditLog.actor_id.in_(clinic_user_ids)))
            .order_by(AuditLog.created_at.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
        )
        .scalars()
        .all()
    )

    return ClinicDetailOut(
        clinic=ClinicOut.model_validate(clinic),
        user_count=_count(db, User, clinic.id),
        patient_count=_count(db, Patient, clinic.id),
        invoice_count=_count(db, Invoice, clinic.id),
        recent_activity=[AuditLogOut.model_validate(entry) for entry in recent],
    )


@router.patch("/clinics/{clinic_id}", response_model=ClinicOut)
@with_super_admin_auth()
def update_clinic(
    clinic_id: str,
    body: ClinicAdminUpdateIn,
    request: Request,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> Clinic:
    clinic = _load_clinic(db, clinic_id)

    updates = body.model_dump(exclude_unset=True)
    for field, value in updates.items():
        setattr(clinic, field, value)
    db.commit()

    client_id, user_agent = request_origin(request)
    log_super_admin_action(
        db,
        super_admin.id,
        AuditActions.CLINIC_UPDATED,
        "Clinic",
        clinic.id,
        {"updates": updates},
        ip_address=client_id,
        user_agent=user_agent,
    )
    db.refresh(clinic)
    return clinic


def _set_clinic_active(
    db: Session,
    request: Request,
    super_admin: SuperAdminContext,
    clinic_id: str,
    active: bool,
) -> Clinic:
    clinic = _load_clinic(db, clinic_id)
    clinic.is_active = active
    clinic.subscription_status = "ACTIVE" if active else "SUSPENDED"
    db.commit()

    client_id, user_agent = request_origin(request)
    log_super_admin_action(
        db,
        super_admin.id,
        AuditActions.CLINIC_ACTIVATED if active else AuditActions.CLINIC_SUSPENDED,
        "Clinic",
        clinic.id,
        {"clinicName": clinic.name},
        ip_address=client_id,
        user_agent=user_agent,
    )
    db.refresh(clinic)
    return clinic


@router.post("/clinics/{clinic_id}/suspend", response_model=ClinicOut)
@with_super_admin_auth()
def suspend_clinic(
    clinic_id: str,
    request: Request,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> Clinic:
    return _set_clinic_active(db, request, super_admin, clinic_id, active=False)


@router.post("/clinics/{clinic_id}/activate", response_model=ClinicOut)
@with_super_admin_auth()
def activate_clinic(
    clinic_id: str,
    request: Request,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> Clinic:
    return _set_clinic_active(db, request, super_admin, clinic_id, active=True)


@router.post("/clinics/{clinic_id}/impersonate", response_model=ImpersonationOut)
@with_super_admin_auth()
def impersonate_clinic(
    clinic_id: str,
    request: Request,
    response: Response,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
    config: SecurityConfig = Depends(get_security_config),
    settings: Settings = Depends(get_app_settings),
) -> ImpersonationOut:
    """
    Open a short-lived regular session as the clinic's first active admin.

    The session is an ordinary row in ``sessions``, so it is tenant-scoped like
    any other login and can be revoked the same way.
    """

    clinic = _load_clinic(db, clinic_id)
    if not clinic.is_active:
        raise BadRequest("Clinic is suspended")

    target = db.execute(
        select(User)
        .where(User.clinic_id == clinic.id, User.role == Role.ADMIN, User.is_active.is_(True))
        .order_by(User.created_at)
        .limit(1)
    ).scalar_one_or_none()
    if target is None:
        raise NotFound("No admin user found for this clinic")

    client_id, user_agent = request_origin(request)
    ttl = timedelta(minutes=settings.impersonation_ttl_minutes)
    session = issue_session(db, target, ttl, ip_address=client_id, user_agent=user_agent, record_login=False)
    set_session_cookie(response, config, session.token, ttl, settings.cookie_secure)
    logger.info(
        "Impersonation started super_admin_id=%s user_id=%s session_id=%s", super_admin.id, target.id, session.id
    )

    log_super_admin_action(
        db,
        super_admin.id,
        AuditActions.IMPERSONATION_STARTED,
        "Clinic",
        clinic.id,
        {"clinicName": clinic.name, "targetUserId": target.id, "targetUserEmail": target.email},
        ip_address=client_id,
        user_agent=user_agent,
    )
    return ImpersonationOut(
        clinic=ClinicRefOut.model_validate(clinic),
        user=UserOut.model_validate(target),
        expires_at=session.expires_at,
    )


# ---- users ----


def _load_user(db: Session, user_id: str) -> User:
    user = db.execute(
        select(User).where(User.id == user_id).options(selectinload(User.clinic))
    ).scalar_one_or_none()
    if user is None:
        raise NotFound("User not found")
    return user


@router.get("/users", response_model=list[SuperAdminUserOut])
@with_super_admin_auth()
def list_users(
    search: str | None = Query(default=None),
    role: Role | None = Query(default=None),
    clinic_id: str | None = Query(default=None, alias="clinicId"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> list[User]:
    stmt = select(User).outerjoin(User.clinic).options(selectinload(User.clinic))
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(User.name.ilike(pattern), User.email.ilike(pattern), Clinic.name.ilike(pattern)))
    if role is not None:
        stmt = stmt.where(User.role == role)
    if clinic_id:
        stmt = stmt.where(User.clinic_id == clinic_id)

    stmt = stmt.order_by(User.created_at.desc(), User.id).offset((page - 1) * limit).limit(limit)
    return list(db.execute(stmt).scalars().all())


@router.get("/users/{user_id}", response_model=SuperAdminUserOut)
@with_super_admin_auth()
def get_user(
    user_id: str,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> User:
    return _load_user(db, user_id)


@router.patch("/users/{user_id}", response_model=SuperAdminUserOut)
@with_super_admin_auth()
def update_user(
    user_id: str,
    body: SuperAdminUserUpdateIn,
    request: Request,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> User:
    """
    Edit a clinic user. Role and clinic changes apply on that user's next
    request; a password change ends all of the user's sessions.
    """

    user = _load_user(db, user_id)
    updates = body.model_dump(exclude_unset=True)

    if "email" in updates:
        updates["email"] = updates["email"].strip().lower()
        taken = db.execute(
            select(User.id).where(User.email == updates["email"], User.id != user.id)
        ).scalar_one_or_none()
        if taken is not None:
            raise BadRequest("Email already in use")

    if updates.get("clinic_id") is not None:
        _load_clinic(db, updates["clinic_id"])

    password = updates.pop("password", None)
    if password is not None:
        if len(password) < MIN_PASSWORD_LENGTH:
            raise BadRequest(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        user.password_hash = hash_password(password)

    for field, value in updates.items():
        setattr(user, field, value)
    db.commit()

    if password is not None:
        revoke_all_sessions(db, user.id)

    recorded = body.model_dump(mode="json", exclude_unset=True)
    if password is not None:
        recorded["password"] = "CHANGED"
    if "email" in updates:
        recorded["email"] = updates["email"]

    client_id, user_agent = request_origin(request)
    log_super_admin_action(
        db,
        super_admin.id,
        AuditActions.USER_UPDATED,
        "User",
        user.id,
        {"updates": recorded},
        ip_address=client_id,
        user_agent=user_agent,
    )
    return _load_user(db, user.id)


# ---- settings ----


@router.post("/settings/password", response_model=MessageOut)
@with_super_admin_auth()
def change_password(
    body: ChangePasswordIn,
    request: Request,
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> MessageOut:
    client_id, user_agent = request_origin(request)
    change_super_admin_password(
        db,
        super_admin,
        body.current_password,
        body.new_password,
        ip_address=client_id,
        user_agent=user_agent,
    )
    return MessageOut(message="Password updated successfully")


# ---- monitoring ----


def get_metrics_reader(request: Request) -> MetricsReader:
    reader = getattr(request.app.state, "metrics_reader", None)
    if reader is None:
        raise RuntimeError("Metrics reader not configured. Did create_app() run?")
    return reader


@router.get("/performance/metrics")
@with_super_admin_auth()
def performance_metrics(
    time_range: str = Query(default="24h", alias="timeRange"),
    super_admin: SuperAdminContext = Depends(get_super_admin),
    reader: MetricsReader = Depends(get_metrics_reader),
) -> dict[str, Any]:
    if time_range not in TIME_RANGES:
        raise BadRequest(f"Invalid timeRange. Must be one of: {', '.join(TIME_RANGES)}")

    # The real-time feed only keeps the last day.
    real_time_range = "1h" if time_range == "1h" else "24h"
    try:
        historical = reader.get_historical_metrics(time_range)
        real_time = reader.get_real_time_metrics(real_time_range)
    except MetricsUnavailable:
        logger.exception("Failed to fetch performance metrics time_range=%s", time_range)
        raise AuthorizationError("Failed to fetch performance metrics")

    return {"timeRange": time_range, "historical": historical, "realTime": real_time}


@router.get("/audit-logs", response_model=list[AuditLogOut], response_model_by_alias=True)
@with_super_admin_auth()
def list_audit_logs(
    action: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    super_admin: SuperAdminContext = Depends(get_super_admin),
    db: Session = Depends(get_db),
) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.created_at.desc()).limit(limit)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    return list(db.execute(stmt).scalars().all())
