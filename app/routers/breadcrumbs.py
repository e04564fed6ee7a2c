from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.clinical import Invoice, Patient, Treatment
from app.schemas.clinical import InvoiceBreadcrumbOut, PatientBreadcrumbOut, TreatmentBreadcrumbOut
from app.security.context import Principal
from app.security.decorators import with_auth
from app.security.dependencies import get_principal
from app.security.errors import NotFound
from app.security.scoping import ResourceKind, require_access, require_patient

router = APIRouter(prefix="/breadcrumb", tags=["breadcrumbs"])


def _full_name(patient: Patient) -> str:
    return f"{patient.first_name} {patient.last_name}"


@router.get("/patient/{patient_id}", response_model=PatientBreadcrumbOut)
@with_auth()
def patient_breadcrumb(
    patient_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> PatientBreadcrumbOut:
    require_access(db, ResourceKind.PATIENT, patient_id, principal)
    patient = db.get(Patient, patient_id)
    if patient is None:
        raise NotFound("Patient not found")
    return PatientBreadcrumbOut(id=patient.id, name=_full_name(patient))


@router.get("/invoice/{invoice_id}", response_model=InvoiceBreadcrumbOut)
@with_auth()
def invoice_breadcrumb(
    invoice_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> InvoiceBreadcrumbOut:
    require_access(db, ResourceKind.INVOICE, invoice_id, principal)
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    patient = require_patient(invoice)
    return InvoiceBreadcrumbOut(id=invoice.id, invoice_number=invoice.invoice_number, patient_name=_full_name(patient))


@router.get("/treatment/{treatment_id}", response_model=TreatmentBreadcrumbOut)
@with_auth()
def treatment_breadcrumb(
    treatment_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> TreatmentBreadcrumbOut:
    require_access(db, ResourceKind.TREATMENT, treatment_id, principal)
    treatment = db.get(Treatment, treatment_id)
    if treatment is None:
        raise NotFound("Treatment not found")
    patient = require_patient(treatment)
    return TreatmentBreadcrumbOut(
        id=treatment.id,
        name=treatment.diagnosis or "Treatment",
        patient_name=_full_name(patient),
    )
