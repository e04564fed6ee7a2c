from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.db.base import Base
from app.db.session import SessionLocal
from app.models.clinical import Invoice, Patient, Treatment
from app.models.security import Clinic, SuperAdmin, User
from app.security.passwords import hash_password
from app.security.permissions import Role
from app.settings import Settings, get_settings

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo-password"


def init_db(session_factory: sessionmaker | None = None, settings: Settings | None = None) -> None:
    """
    Create tables + seed demo data.

    This is deliberately small and deterministic so you can quickly try the
    security behavior without additional setup. Every demo user logs in with
    ``DEMO_PASSWORD``.
    """

    factory = session_factory or SessionLocal
    settings = settings or get_settings()

    Base.metadata.create_all(bind=factory.kw["bind"])

    with factory() as db:
        if not _has_seed_data(db):
            _seed(db)
        if settings.super_admin_email and settings.super_admin_password:
            _ensure_super_admin(db, settings.super_admin_email, settings.super_admin_password)


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Clinic.id).limit(1)).first() is not None


def _ensure_super_admin(db: Session, email: str, password: str) -> None:
    email = email.strip().lower()
    existing = db.execute(select(SuperAdmin.id).where(SuperAdmin.email == email)).first()
    if existing is not None:
        return
    db.add(SuperAdmin(email=email, name="Platform Operator", password_hash=hash_password(password)))
    db.commit()
    logger.info("Bootstrap super admin created")


def _seed(db: Session) -> None:
    password_hash = hash_password(DEMO_PASSWORD)

    # Clinics
    smile = Clinic(name="Smile Dental", clinic_code="SMILE01", subscription_status="ACTIVE", plan_type="pro")
    bright = Clinic(name="Bright Teeth", clinic_code="BRIGHT01")
    db.add_all([smile, bright])
    db.flush()

    # Users
    ada = User(email="ada.admin@smile.example", name="Ada Admin", role=Role.ADMIN, clinic_id=smile.id)
    dan = User(email="dan.doctor@smile.example", name="Dan Doctor", role=Role.CLINIC_DOCTOR, clinic_id=smile.id)
    rita = User(email="rita.reception@smile.example", name="Rita Reception", role=Role.RECEPTIONIST, clinic_id=smile.id)
    sam = User(email="sam.staff@smile.example", name="Sam Staff", role=Role.STAFF, clinic_id=smile.id)
    ezra = User(
        email="ezra.external@smile.example",
        name="Ezra External",
        role=Role.EXTERNAL_DOCTOR,
        clinic_id=smile.id,
        is_external=True,
    )
    bea = User(email="bea.admin@bright.example", name="Bea Admin", role=Role.ADMIN, clinic_id=bright.id)
    for user in (ada, dan, rita, sam, ezra, bea):
        user.password_hash = password_hash
    db.add_all([ada, dan, rita, sam, ezra, bea])
    db.flush()

    # Patients
    p1 = Patient(first_name="Paula", last_name="Molar", clinic_id=smile.id, created_by_id=dan.id)
    p2 = Patient(first_name="Pete", last_name="Canine", clinic_id=smile.id, created_by_id=ezra.id)
    p3 = Patient(first_name="Bill", last_name="Bicuspid", clinic_id=bright.id, created_by_id=bea.id)
    db.add_all([p1, p2, p3])
    db.flush()

    # Billing + treatments
    db.add_all(
        [
            Invoice(invoice_number="INV-0001", patient_id=p1.id, total_amount=120, clinic_id=smile.id, created_by_id=ada.id),
            Invoice(invoice_number="INV-0002", patient_id=p3.id, total_amount=80, clinic_id=bright.id, created_by_id=bea.id),
            Treatment(
                patient_id=p1.id,
                diagnosis="Cavity filling",
                treatment_date=date(2026, 3, 2),
                cost=120,
                clinic_id=smile.id,
                created_by_id=dan.id,
            ),
        ]
    )

    db.commit()
    logger.info("Seeded demo clinics=%s users=%s", 2, 6)
