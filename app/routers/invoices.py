from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.clinical import Invoice
from app.schemas.clinical import InvoiceOut
from app.security.context import Principal
from app.security.dependencies import get_principal
from app.security.errors import NotFound
from app.security.scoping import ResourceKind, require_access

# Permissions for these routes are declared in config/security_config.yaml.
router = APIRouter(prefix="/invoices", tags=["invoices"])


@router.get("", response_model=list[InvoiceOut])
def list_invoices(db: Session = Depends(get_db)) -> list[Invoice]:
    return list(db.scalars(select(Invoice).order_by(Invoice.created_at.desc())).all())


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(
    invoice_id: str,
    principal: Principal = Depends(get_principal),
    db: Session = Depends(get_db),
) -> Invoice:
    require_access(db, ResourceKind.INVOICE, invoice_id, principal)
    invoice = db.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFound("Invoice not found")
    return invoice
