"""
Tenant and ownership scoping rules.

Two entry points, both derived from the same per-kind rule table:

- ``scope_for(kind, principal)`` returns a SQLAlchemy boolean clause selecting
  the rows of that kind the principal may see. app/db/filters.py applies it to
  every SELECT automatically.
- ``verify_access(db, kind, resource_id, principal)`` is the single-row check
  used when a handler fetches one id directly. It reuses ``scope_for`` and
  fails closed: a row outside scope is reported exactly like a missing row.

Rules:
- clinic isolation: ``row.clinic_id == principal.clinic_id``
- a non-external principal without a clinic sees nothing clinic-scoped
  (platform-wide access only exists on the super-admin channel)
- external principals are further narrowed to ``row.created_by_id == principal.id``;
  without a clinic they only see their own clinic-less rows
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from fastapi import status
from sqlalchemy import and_, false, select
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from app.models.clinical import Appointment, Document, Invoice, Patient, Treatment
from app.models.security import UserSession
from app.security.context import Principal
from app.security.errors import DataIntegrityError, Forbidden, NotFound

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    PATIENT = "patient"
    INVOICE = "invoice"
    TREATMENT = "treatment"
    DOCUMENT = "document"
    APPOINTMENT = "appointment"
    SESSION = "session"


# Clinic-scoped kinds -> model. Every model here has clinic_id and created_by_id.
CLINIC_SCOPED_MODELS: dict[ResourceKind, type] = {
    ResourceKind.PATIENT: Patient,
    ResourceKind.INVOICE: Invoice,
    ResourceKind.TREATMENT: Treatment,
    ResourceKind.DOCUMENT: Document,
    ResourceKind.APPOINTMENT: Appointment,
}

_NOT_FOUND_MESSAGES: dict[ResourceKind, str] = {
    ResourceKind.PATIENT: "Patient not found",
    ResourceKind.INVOICE: "Invoice not found",
    ResourceKind.TREATMENT: "Treatment not found",
    ResourceKind.DOCUMENT: "Document not found",
    ResourceKind.APPOINTMENT: "Appointment not found",
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: str | None = None
    status_code: int = status.HTTP_200_OK

    @classmethod
    def allow(cls) -> AccessDecision:
        return cls(allowed=True)

    @classmethod
    def not_found(cls, reason: str) -> AccessDecision:
        return cls(allowed=False, reason=reason, status_code=status.HTTP_404_NOT_FOUND)

    @classmethod
    def forbidden(cls, reason: str) -> AccessDecision:
        return cls(allowed=False, reason=reason, status_code=status.HTTP_403_FORBIDDEN)

    def raise_for_denial(self) -> None:
        if self.allowed:
            return
        if self.status_code == status.HTTP_403_FORBIDDEN:
            raise Forbidden(self.reason)
        raise NotFound(self.reason)


def model_for(kind: ResourceKind):
    return CLINIC_SCOPED_MODELS[kind]


def scope_for(kind: ResourceKind, principal: Principal) -> ColumnElement[bool]:
    """Row filter for ``kind`` as seen by ``principal``."""

    if kind is ResourceKind.SESSION:
        return UserSession.user_id == principal.id

    model = model_for(kind)

    if principal.is_external:
        owner = model.created_by_id == principal.id
        if principal.clinic_id is None:
            return and_(owner, model.clinic_id.is_(None))
        return and_(owner, model.clinic_id == principal.clinic_id)

    if principal.clinic_id is None:
        return false()

    return model.clinic_id == principal.clinic_id


def verify_access(db: Session, kind: ResourceKind, resource_id: str, principal: Principal) -> AccessDecision:
    """
    Instance-level check for one row.

    Sessions are owner-checked and disclose existence (403 for someone else's
    session); a session that no longer exists is allowed, so revoking it
    twice is a no-op. Every other kind hides existence: out of scope -> 404.
    """

    if kind is ResourceKind.SESSION:
        owner_id = db.scalar(select(UserSession.user_id).where(UserSession.id == resource_id))
        if owner_id is None:
            return AccessDecision.allow()
        if owner_id != principal.id:
            logger.info("Session owned by another user session_id=%s user_id=%s", resource_id, principal.id)
            return AccessDecision.forbidden("Forbidden")
        return AccessDecision.allow()

    model = model_for(kind)
    stmt = select(model.id).where(model.id == resource_id, scope_for(kind, principal))
    # Bypass the automatic loader criteria; the explicit predicate above is the check.
    found = db.execute(stmt, execution_options={"skip_authz_scoping": True}).first()
    if found is None:
        logger.info(
            "Resource hidden or missing kind=%s id=%s user_id=%s clinic_id=%s",
            kind.value,
            resource_id,
            principal.id,
            principal.clinic_id,
        )
        return AccessDecision.not_found(_NOT_FOUND_MESSAGES[kind])
    return AccessDecision.allow()


def require_access(db: Session, kind: ResourceKind, resource_id: str, principal: Principal) -> None:
    verify_access(db, kind, resource_id, principal).raise_for_denial()


def require_patient(record) -> Patient:
    """
    Return the parent patient of an in-scope record, or fail the request with a
    data-integrity error when the relation is dangling.
    """

    patient = getattr(record, "patient", None)
    if patient is None:
        logger.error(
            "Dangling patient relation table=%s id=%s patient_id=%s",
            getattr(record, "__tablename__", type(record).__name__),
            getattr(record, "id", None),
            getattr(record, "patient_id", None),
        )
        raise DataIntegrityError()
    return patient
