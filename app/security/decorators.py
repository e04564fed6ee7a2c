from __future__ import annotations

from collections.abc import Callable, Iterable

from app.security.config import Channel
from app.security.permissions import Permission


def with_auth(required_permissions: Iterable[Permission] = (), require_all: bool = True) -> Callable:
    """
    Declare that a route needs a regular session and, optionally, permissions.

    Implementation detail:
    - This decorator does NOT perform auth itself.
    - It attaches metadata that the global security dependency reads
      after routing (during dependency resolution), on top of whatever
      config/security_config.yaml says for the path.

    Apply it *below* the router decorator so FastAPI registers the marked function.
    """

    def decorator(fn: Callable) -> Callable:
        existing = set(getattr(fn, "__security_required_permissions__", set()))
        setattr(fn, "__security_required_permissions__", existing | {Permission(p) for p in required_permissions})
        setattr(fn, "__security_require_all__", require_all)
        setattr(fn, "__security_channel__", Channel.USER)
        return fn

    return decorator


def with_super_admin_auth() -> Callable:
    """
    Declare that a route belongs to the operator channel.

    The global dependency then resolves the super-admin cookie instead of the
    regular one and skips the role/permission registry entirely.
    """

    def decorator(fn: Callable) -> Callable:
        setattr(fn, "__security_channel__", Channel.SUPER_ADMIN)
        return fn

    return decorator
