from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.security import reject_null


class PatientOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    first_name: str
    last_name: str
    email: str | None
    phone: str | None
    date_of_birth: date | None
    clinic_id: str | None
    created_by_id: str
    created_at: datetime


class PatientUpdateIn(BaseModel):
    # Tenant and owner columns are deliberately not writable here.
    first_name: str | None = Field(default=None, min_length=1)
    last_name: str | None = Field(default=None, min_length=1)
    email: str | None = None
    phone: str | None = None
    date_of_birth: date | None = None
    notes: str | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def names_not_null(cls, value):
        return reject_null(value)


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    invoice_number: str
    patient_id: str | None
    total_amount: float
    status: str
    clinic_id: str | None
    created_at: datetime


class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    patient_id: str | None
    file_name: str
    content_type: str | None
    clinic_id: str | None
    created_at: datetime


class PatientBreadcrumbOut(BaseModel):
    id: str
    name: str


class InvoiceBreadcrumbOut(BaseModel):
    id: str
    invoice_number: str
    patient_name: str


class TreatmentBreadcrumbOut(BaseModel):
    id: str
    name: str
    patient_name: str
