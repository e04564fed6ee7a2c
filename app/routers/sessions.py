from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.security import UserSession
from app.schemas.security import MessageOut, SessionOut
from app.security.audit import AuditActions, create_audit_log
from app.security.auth import revoke_session
from app.security.context import Principal
from app.security.decorators import with_auth
from app.security.dependencies import get_principal, request_origin
from app.security.scoping import ResourceKind, require_access, scope_for

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=list[SessionOut])
@with_auth()
def list_sessions(
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> list[SessionOut]:
    rows = db.scalars(
        select(UserSession)
        .where(scope_for(ResourceKind.SESSION, principal))
        .order_by(UserSession.created_at.desc())
    ).all()
    return [
        SessionOut.model_validate(row).model_copy(update={"is_current": row.id == principal.session_id})
        for row in rows
    ]


@router.delete("/{session_id}", response_model=MessageOut)
@with_auth()
def delete_session(
    session_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> MessageOut:
    # 403 when it belongs to someone else; an already-revoked id is a no-op.
    require_access(db, ResourceKind.SESSION, session_id, principal)

    if revoke_session(db, session_id):
        client_id, user_agent = request_origin(request)
        create_audit_log(
            db,
            principal.id,
            AuditActions.SESSION_REVOKED,
            "Session",
            session_id,
            ip_address=client_id,
            user_agent=user_agent,
        )
    return MessageOut(message="Session revoked successfully")
