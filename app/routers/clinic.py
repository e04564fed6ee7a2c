from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.security import Clinic, User
from app.schemas.security import ClinicOut, ClinicSettingsIn, RoleOut, UserOut
from app.security.audit import AuditActions, create_audit_log
from app.security.context import Principal
from app.security.decorators import with_auth
from app.security.dependencies import get_principal, request_origin
from app.security.errors import NotFound
from app.security.permissions import Permission, available_roles, permissions_for, role_description, role_display_name

router = APIRouter(tags=["clinic"])


@router.get("/me", response_model=UserOut)
@with_auth()
def me(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> User:
    user = db.get(User, principal.id)
    if user is None:
        raise NotFound("User not found")
    return user


@router.get("/roles", response_model=list[RoleOut])
@with_auth()
def list_roles() -> list[RoleOut]:
    return [
        RoleOut(
            role=role,
            name=role_display_name(role),
            description=role_description(role),
            permissions=sorted(p.value for p in permissions_for(role)),
        )
        for role in available_roles()
    ]


def _own_clinic(db: Session, principal: Principal) -> Clinic:
    # The caller's own tenant is the only clinic reachable from this channel.
    clinic = db.get(Clinic, principal.clinic_id) if principal.clinic_id else None
    if clinic is None:
        raise NotFound("Clinic not found")
    return clinic


@router.get("/clinic", response_model=ClinicOut)
@with_auth(required_permissions=[Permission.CLINIC_READ])
def get_clinic(principal: Principal = Depends(get_principal), db: Session = Depends(get_db)) -> Clinic:
    return _own_clinic(db, principal)


@router.put("/clinic", response_model=ClinicOut)
@with_auth(required_permissions=[Permission.CLINIC_UPDATE])
def update_clinic(
    body: ClinicSettingsIn,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Clinic:
    clinic = _own_clinic(db, principal)

    changes = body.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(clinic, field, value)
    db.commit()

    client_id, user_agent = request_origin(request)
    create_audit_log(
        db,
        principal.id,
        AuditActions.CLINIC_SETTINGS_UPDATED,
        "Clinic",
        clinic.id,
        {"updates": changes},
        ip_address=client_id,
        user_agent=user_agent,
    )
    db.refresh(clinic)
    return clinic
