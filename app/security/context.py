from __future__ import annotations

from dataclasses import dataclass

from app.security.permissions import Role


@dataclass(frozen=True)
class Principal:
    """
    Resolved identity of a regular (clinic-side) caller.

    Built once per request by the session resolver and passed explicitly:
    - request.state.principal (FastAPI request lifetime)
    - Session.info["principal"] (SQLAlchemy session lifetime, drives row scoping)
    """

    id: str
    role: Role
    # None means "not clinic-scoped" (independent external doctor).
    clinic_id: str | None
    # External users only ever see rows they created.
    is_external: bool
    session_id: str | None = None


@dataclass(frozen=True)
class SuperAdminContext:
    """
    Resolved operator identity. Deliberately unrelated to ``Principal``: the two
    trust domains never share a type, a cookie or a resolver.
    """

    id: str
    email: str
    name: str
    session_id: str
