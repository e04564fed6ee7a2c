from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.clinical import Patient
from app.schemas.clinical import PatientOut, PatientUpdateIn
from app.security.context import Principal
from app.security.decorators import with_auth
from app.security.dependencies import get_principal
from app.security.errors import NotFound
from app.security.permissions import Permission
from app.security.scoping import ResourceKind, require_access

router = APIRouter(prefix="/patients", tags=["patients"])


@router.get("", response_model=list[PatientOut])
@with_auth(required_permissions=[Permission.PATIENT_READ])
def list_patients(db: Session = Depends(get_db)) -> list[Patient]:
    # Clinic / owner filters are applied transparently via app/db/filters.py.
    return list(db.scalars(select(Patient).order_by(Patient.last_name, Patient.first_name)).all())


@router.get("/{patient_id}", response_model=PatientOut)
@with_auth(required_permissions=[Permission.PATIENT_READ])
def get_patient(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Patient:
    require_access(db, ResourceKind.PATIENT, patient_id, principal)
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient not found")
    return patient


@router.put("/{patient_id}", response_model=PatientOut)
@with_auth(required_permissions=[Permission.PATIENT_UPDATE])
def update_patient(
    patient_id: str,
    body: PatientUpdateIn,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Patient:
    require_access(db, ResourceKind.PATIENT, patient_id, principal)
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient not found")

    for field, value in body.model_dump(exclude_unset=True).items():
        setattr(patient, field, value)
    db.commit()
    db.refresh(patient)
    return patient
