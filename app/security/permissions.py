"""
Static permission catalogue and role -> permission table.

Routes declare the permissions they need with these constants (see
``app.security.decorators.with_auth`` and ``config/security_config.yaml``);
nothing outside this module decides what a role may do.

Lookups are pure and deny-by-default: an unknown role or permission is
simply "not granted", never an error.
"""

from __future__ import annotations

from enum import Enum
from types import MappingProxyType
from typing import Iterable, Mapping


class Role(str, Enum):
    ADMIN = "ADMIN"
    CLINIC_DOCTOR = "CLINIC_DOCTOR"
    HYGIENIST = "HYGIENIST"
    RECEPTIONIST = "RECEPTIONIST"
    STAFF = "STAFF"
    EXTERNAL_DOCTOR = "EXTERNAL_DOCTOR"


class Permission(str, Enum):
    # Clinic (tenant) settings
    CLINIC_READ = "clinic:read"
    CLINIC_UPDATE = "clinic:update"

    # Patients
    PATIENT_CREATE = "patient:create"
    PATIENT_READ = "patient:read"
    PATIENT_UPDATE = "patient:update"
    PATIENT_DELETE = "patient:delete"
    PATIENT_READ_ALL = "patient:read:all"

    # Treatments
    TREATMENT_CREATE = "treatment:create"
    TREATMENT_READ = "treatment:read"
    TREATMENT_UPDATE = "treatment:update"
    TREATMENT_DELETE = "treatment:delete"
    TREATMENT_FINALIZE = "treatment:finalize"

    # Appointments
    APPOINTMENT_CREATE = "appointment:create"
    APPOINTMENT_READ = "appointment:read"
    APPOINTMENT_UPDATE = "appointment:update"
    APPOINTMENT_DELETE = "appointment:delete"

    # Invoices / finance
    INVOICE_READ = "invoice:read"
    INVOICE_CREATE = "invoice:create"
    INVOICE_FINALIZE = "invoice:finalize"
    INVOICE_PROCESS_PAYMENT = "invoice:process:payment"

    # Documents
    DOCUMENT_CREATE = "document:create"
    DOCUMENT_READ = "document:read"
    DOCUMENT_UPDATE = "document:update"
    DOCUMENT_DELETE = "document:delete"

    # Staff management
    STAFF_READ = "staff:read"
    STAFF_CREATE = "staff:create"
    STAFF_UPDATE = "staff:update"
    STAFF_DELETE = "staff:delete"

    # Analytics
    ANALYTICS_READ = "analytics:read"


P = Permission

_CLINICAL = frozenset(
    {
        P.PATIENT_CREATE,
        P.PATIENT_READ,
        P.PATIENT_UPDATE,
        P.PATIENT_READ_ALL,
        P.TREATMENT_CREATE,
        P.TREATMENT_READ,
        P.TREATMENT_UPDATE,
        P.TREATMENT_FINALIZE,
        P.APPOINTMENT_CREATE,
        P.APPOINTMENT_READ,
        P.APPOINTMENT_UPDATE,
        P.DOCUMENT_CREATE,
        P.DOCUMENT_READ,
        P.DOCUMENT_UPDATE,
        P.DOCUMENT_DELETE,
    }
)

_FINANCE = frozenset({P.INVOICE_READ, P.INVOICE_CREATE, P.INVOICE_FINALIZE, P.INVOICE_PROCESS_PAYMENT})

ROLE_PERMISSIONS: Mapping[Role, frozenset[Permission]] = MappingProxyType(
    {
        # Owner of a clinic: everything.
        Role.ADMIN: frozenset(Permission),
        Role.CLINIC_DOCTOR: _CLINICAL | {P.CLINIC_READ, P.INVOICE_READ, P.ANALYTICS_READ},
        # Can write notes but not finalize.
        Role.HYGIENIST: frozenset(
            {
                P.CLINIC_READ,
                P.PATIENT_READ,
                P.PATIENT_READ_ALL,
                P.TREATMENT_CREATE,
                P.TREATMENT_READ,
                P.TREATMENT_UPDATE,
                P.APPOINTMENT_READ,
                P.DOCUMENT_READ,
            }
        ),
        Role.RECEPTIONIST: _FINANCE
        | {
            P.CLINIC_READ,
            P.PATIENT_READ,
            P.PATIENT_READ_ALL,
            P.APPOINTMENT_CREATE,
            P.APPOINTMENT_READ,
            P.APPOINTMENT_UPDATE,
            P.APPOINTMENT_DELETE,
            P.DOCUMENT_READ,
        },
        Role.STAFF: frozenset({P.CLINIC_READ, P.PATIENT_READ, P.APPOINTMENT_READ, P.DOCUMENT_READ}),
        # Independent doctor: full access, but scoping narrows it to own records.
        Role.EXTERNAL_DOCTOR: _CLINICAL | _FINANCE | {P.PATIENT_DELETE, P.APPOINTMENT_DELETE},
    }
)

_ROLE_NAMES: Mapping[Role, str] = {
    Role.ADMIN: "Admin/Owner",
    Role.CLINIC_DOCTOR: "Clinic Doctor",
    Role.HYGIENIST: "Hygienist/Assistant",
    Role.RECEPTIONIST: "Receptionist",
    Role.STAFF: "Staff",
    Role.EXTERNAL_DOCTOR: "Individual Doctor",
}

_ROLE_DESCRIPTIONS: Mapping[Role, str] = {
    Role.ADMIN: "Full system access. Can manage all modules, users, and clinic-wide settings.",
    Role.CLINIC_DOCTOR: "Full clinical access. Can manage patient records and treatments.",
    Role.HYGIENIST: "Limited clinical access. Can create notes and read patient records.",
    Role.RECEPTIONIST: "Operational access. Can manage appointments and billing, and view demographics.",
    Role.STAFF: "Read-only operational access to patients, appointments and documents.",
    Role.EXTERNAL_DOCTOR: "Full access to own patients, appointments and finance. Independent of any clinic.",
}


def _coerce_role(role: Role | str | None) -> Role | None:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def _coerce_permission(permission: Permission | str | None) -> Permission | None:
    if isinstance(permission, Permission):
        return permission
    try:
        return Permission(permission)
    except ValueError:
        return None


def permissions_for(role: Role | str | None) -> frozenset[Permission]:
    resolved = _coerce_role(role)
    if resolved is None:
        return frozenset()
    return ROLE_PERMISSIONS.get(resolved, frozenset())


def has_permission(role: Role | str | None, permission: Permission | str | None) -> bool:
    resolved = _coerce_permission(permission)
    if resolved is None:
        return False
    return resolved in permissions_for(role)


def has_any_permission(role: Role | str | None, permissions: Iterable[Permission | str]) -> bool:
    return any(has_permission(role, p) for p in permissions)


def has_all_permissions(role: Role | str | None, permissions: Iterable[Permission | str]) -> bool:
    return all(has_permission(role, p) for p in permissions)


def role_display_name(role: Role) -> str:
    return _ROLE_NAMES[role]


def role_description(role: Role) -> str:
    return _ROLE_DESCRIPTIONS[role]


def available_roles() -> list[Role]:
    return list(Role)
