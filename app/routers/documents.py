from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.clinical import Document
from app.schemas.clinical import DocumentOut

router = APIRouter(prefix="/documents", tags=["documents"])


@router.get("", response_model=list[DocumentOut])
def list_documents(patient_id: str | None = None, db: Session = Depends(get_db)) -> list[Document]:
    stmt = select(Document).order_by(Document.created_at.desc())
    if patient_id:
        stmt = stmt.where(Document.patient_id == patient_id)
    return list(db.scalars(stmt).all())
