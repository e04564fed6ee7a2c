from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from app.security.permissions import Permission


class Channel(str, Enum):
    """Trust domain a route belongs to. Each has its own cookie and resolver."""

    USER = "user"
    SUPER_ADMIN = "super_admin"


class AuthConfig(BaseModel):
    session_cookie: str = "session-token"
    super_admin_cookie: str = "super-admin-token"


class DefaultRule(BaseModel):
    auth_required: bool = True
    channel: Channel = Channel.USER
    required_permissions: list[Permission] = Field(default_factory=list)
    require_all: bool = True


class RouteRule(BaseModel):
    path: str
    methods: list[str] = Field(default_factory=lambda: ["GET"])

    auth_required: bool | None = None
    channel: Channel | None = None
    required_permissions: list[Permission] = Field(default_factory=list)
    require_all: bool | None = None

    @field_validator("methods")
    @classmethod
    def upper_methods(cls, methods: list[str]) -> list[str]:
        return [m.upper() for m in methods]

    @property
    def is_template(self) -> bool:
        return "{" in self.path

    def resolve(self, default: DefaultRule) -> EffectiveRule:
        """Fill unset fields from ``default``."""

        # Asking for permissions or the operator channel implies a session,
        # whatever the default says.
        implied = default.auth_required or bool(self.required_permissions) or self.channel is Channel.SUPER_ADMIN
        return EffectiveRule(
            auth_required=implied if self.auth_required is None else self.auth_required,
            channel=self.channel or default.channel,
            required_permissions=frozenset(self.required_permissions or default.required_permissions),
            require_all=default.require_all if self.require_all is None else self.require_all,
        )


class SecurityConfigModel(BaseModel):
    auth: AuthConfig = Field(default_factory=AuthConfig)
    default: DefaultRule = Field(default_factory=DefaultRule)
    routes: list[RouteRule] = Field(default_factory=list)


@dataclass(frozen=True)
class EffectiveRule:
    """
    Fully-resolved rule (defaults applied) for a particular request.
    """

    auth_required: bool
    channel: Channel
    required_permissions: frozenset[Permission]
    require_all: bool


def _template_pattern(path: str) -> re.Pattern[str]:
    # "/patients/{patient_id}" matches exactly one path segment per placeholder.
    return re.compile("/".join("[^/]+" if part.startswith("{") else re.escape(part) for part in path.split("/")))


class SecurityConfig:
    """
    Route rules from YAML, resolved against the defaults once at load time.

    Lookup order for a request: literal path, then templates in file order,
    then the default rule. The first rule listing the method wins.
    """

    def __init__(self, model: SecurityConfigModel):
        self.model = model
        self._fallback = EffectiveRule(
            auth_required=model.default.auth_required,
            channel=model.default.channel,
            required_permissions=frozenset(model.default.required_permissions),
            require_all=model.default.require_all,
        )

        self._literal: dict[tuple[str, str], EffectiveRule] = {}
        self._templates: list[tuple[re.Pattern[str], frozenset[str], EffectiveRule]] = []
        for rule in model.routes:
            effective = rule.resolve(model.default)
            if rule.is_template:
                self._templates.append((_template_pattern(rule.path), frozenset(rule.methods), effective))
                continue
            for method in rule.methods:
                self._literal.setdefault((rule.path, method), effective)

    @property
    def auth(self) -> AuthConfig:
        return self.model.auth

    def match(self, path: str, method: str) -> EffectiveRule:
        method = method.upper()

        found = self._literal.get((path, method))
        if found is not None:
            return found

        return next(
            (effective for pattern, methods, effective in self._templates if method in methods and pattern.fullmatch(path)),
            self._fallback,
        )


def load_security_config(path: Path) -> SecurityConfig:
    """Parse ``path`` (a YAML file with a top-level ``security:`` mapping)."""

    document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    section = document.get("security") if isinstance(document, dict) else None
    if section is None:
        raise ValueError(f"{path}: expected a top-level 'security' mapping")
    return SecurityConfig(SecurityConfigModel.model_validate(section))
