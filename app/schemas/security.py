from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.security.permissions import Role


class LoginIn(BaseModel):
    email: str = Field(min_length=1)
    password: str = Field(min_length=1)


class ForgotPasswordIn(BaseModel):
    email: str = Field(min_length=1)


class ResetPasswordIn(BaseModel):
    token: str = Field(min_length=1)
    password: str


class MessageOut(BaseModel):
    message: str


class ClinicOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    clinic_code: str
    is_active: bool
    subscription_status: str
    plan_type: str
    billing_email: str | None
    created_at: datetime


def reject_null(value):
    # Partial updates: a field may be left out, but null is only accepted
    # where the column itself is nullable.
    if value is None:
        raise ValueError("must not be null")
    return value


class ClinicSettingsIn(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    billing_email: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value):
        return reject_null(value)


class ClinicAdminUpdateIn(BaseModel):
    is_active: bool | None = None
    subscription_status: str | None = Field(default=None, pattern="^(TRIAL|ACTIVE|SUSPENDED|CANCELLED)$")
    plan_type: str | None = Field(default=None, min_length=1)
    billing_email: str | None = None

    @field_validator("is_active", "subscription_status", "plan_type")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class SuperAdminUserUpdateIn(BaseModel):
    name: str | None = None
    email: str | None = Field(default=None, min_length=3)
    role: Role | None = None
    clinic_id: str | None = None
    password: str | None = None

    @field_validator("email", "role", "password")
    @classmethod
    def not_null(cls, value):
        return reject_null(value)


class ChangePasswordIn(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str | None
    role: Role
    clinic_id: str | None
    is_external: bool
    is_active: bool


class ClinicRefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    clinic_code: str


class SuperAdminUserOut(UserOut):
    last_login_at: datetime | None
    created_at: datetime
    clinic: ClinicRefOut | None


class ImpersonationOut(BaseModel):
    clinic: ClinicRefOut
    user: UserOut
    expires_at: datetime


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    ip_address: str | None
    user_agent: str | None
    created_at: datetime
    expires_at: datetime | None
    is_current: bool = False


class RoleOut(BaseModel):
    role: Role
    name: str
    description: str
    permissions: list[str]


class SuperAdminOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    is_active: bool
    last_login_at: datetime | None
    created_at: datetime


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    actor_id: str | None
    actor_type: str
    action: str
    resource_type: str | None
    resource_id: str | None
    details: dict[str, Any] | None = Field(default=None, serialization_alias="metadata")
    created_at: datetime


class ClinicDetailOut(BaseModel):
    clinic: ClinicOut
    user_count: int
    patient_count: int
    invoice_count: int
    recent_activity: list[AuditLogOut]
