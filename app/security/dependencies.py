from __future__ import annotations

import logging

from fastapi import Depends, Request

from app.db.session import get_session_factory
from app.security.auth import extract_session_token, resolve_principal
from app.security.config import Channel, EffectiveRule, SecurityConfig
from app.security.context import Principal, SuperAdminContext
from app.security.errors import Forbidden, Unauthenticated
from app.security.permissions import Permission, has_all_permissions, has_any_permission
from app.security.rate_limit import get_client_identifier
from app.security.super_admin import extract_super_admin_token, resolve_super_admin
from app.settings import Settings, get_settings

logger = logging.getLogger(__name__)


def get_security_config(request: Request) -> SecurityConfig:
    config = getattr(request.app.state, "security_config", None)
    if config is None:
        raise RuntimeError("Security config not loaded. Did create_app() run?")
    return config


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise Unauthenticated()
    return principal


def get_super_admin(request: Request) -> SuperAdminContext:
    super_admin = getattr(request.state, "super_admin", None)
    if super_admin is None:
        raise Unauthenticated("Unauthorized - Please login as super admin")
    return super_admin


def enforce_security(
    request: Request,
    config: SecurityConfig = Depends(get_security_config),
) -> None:
    """
    Global security dependency, installed app-wide in create_app().

    Order is fixed: resolve identity -> check permissions -> publish the
    principal for the handler and its scoped DB session. Every route is
    covered; a path nobody configured falls back to the protected default.

    Identity is resolved on a short-lived session of its own: the handler's
    `get_db` session must be created after the principal is published.
    """

    path = request.url.path
    method = request.method.upper()

    rule = config.match(path, method)

    endpoint = request.scope.get("endpoint")
    decorator_channel: Channel | None = getattr(endpoint, "__security_channel__", None) if endpoint else None
    decorator_permissions: set[Permission] = (
        set(getattr(endpoint, "__security_required_permissions__", set())) if endpoint else set()
    )
    decorator_require_all: bool | None = getattr(endpoint, "__security_require_all__", None) if endpoint else None

    channel = _resolve_channel(rule, decorator_channel, path, method)

    auth_required = rule.auth_required or decorator_channel is not None or bool(decorator_permissions)
    if not auth_required:
        return

    if channel is Channel.SUPER_ADMIN:
        token = extract_super_admin_token(request, config)
        with get_session_factory(request)() as db:
            request.state.super_admin = resolve_super_admin(db, token)
        logger.debug("Super admin authorized path=%s method=%s", path, method)
        return

    # 1) who is calling
    token = extract_session_token(request, config)
    with get_session_factory(request)() as db:
        principal = resolve_principal(db, token)

    # 2) may they call this route
    required = set(rule.required_permissions) | decorator_permissions
    require_all = rule.require_all if decorator_require_all is None else decorator_require_all
    if required:
        granted = (
            has_all_permissions(principal.role, required)
            if require_all
            else has_any_permission(principal.role, required)
        )
        if not granted:
            logger.info(
                "Permission denied path=%s method=%s user_id=%s role=%s required=%s",
                path,
                method,
                principal.id,
                principal.role.value,
                sorted(p.value for p in required),
            )
            raise Forbidden("Forbidden - Insufficient permissions")

    # 3) publish it; get_db copies it into Session.info for row scoping
    request.state.principal = principal


def _resolve_channel(rule: EffectiveRule, decorator_channel: Channel | None, path: str, method: str) -> Channel:
    if decorator_channel is None:
        return rule.channel
    if rule.channel is not decorator_channel:
        # Config and code disagree about the trust domain: refuse to guess.
        logger.error(
            "Channel mismatch path=%s method=%s config=%s decorator=%s",
            path,
            method,
            rule.channel.value,
            decorator_channel.value,
        )
        raise RuntimeError(f"Security channel mismatch for {method} {path}")
    return decorator_channel


def get_app_settings(request: Request) -> Settings:
    settings = getattr(request.app.state, "settings", None)
    return settings or get_settings()


def request_origin(request: Request) -> tuple[str, str | None]:
    """(client identifier, user agent) for audit rows."""

    return get_client_identifier(request, get_app_settings(request).trusted_proxies), request.headers.get("user-agent")
