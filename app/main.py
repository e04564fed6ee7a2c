from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from app.db import filters as _filters  # noqa: F401  (register SQLAlchemy filters)
from app.db.init_db import init_db
from app.db.session import SessionLocal
from app.logging_config import configure_app_logging
from app.observability.metrics import MetricsReader, build_metrics_reader
from app.routers import auth, breadcrumbs, clinic, documents, health, invoices, patients, sessions, super_admin
from app.security.config import SecurityConfig, load_security_config
from app.security.dependencies import enforce_security
from app.security.rate_limit import RateLimiter
from app.settings import Settings, get_settings

logger = logging.getLogger(__name__)

PasswordResetNotifier = Callable[[str, str, str | None], None]


def _log_password_reset(email: str, token: str, name: str | None) -> None:
    # Delivery is handled by the mail integration; never log the token itself.
    logger.info("Password reset requested, no mailer configured recipient=%s", email)


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker | None = None,
    metrics_reader: MetricsReader | None = None,
    password_reset_notifier: PasswordResetNotifier | None = None,
    security_config: SecurityConfig | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        configure_app_logging(settings.log_level)
        logger.info("App startup beginning")

        init_db(app.state.session_factory, settings)
        logger.info("Database initialized (tables ensured + seed if needed)")

        yield
        # Shutdown (nothing to clean up)

    # Global dependency: every route passes through the security layer.
    app = FastAPI(dependencies=[Depends(enforce_security)], lifespan=lifespan)

    app.state.settings = settings
    # Loaded eagerly so a broken config fails at startup, not on first request.
    app.state.security_config = security_config or load_security_config(settings.resolved_security_config_path())
    app.state.session_factory = session_factory or SessionLocal
    app.state.rate_limiter = RateLimiter(settings.rate_limits, trusted_proxies=settings.trusted_proxies)
    app.state.metrics_reader = metrics_reader or build_metrics_reader(
        settings.apm_base_url, timeout_seconds=settings.apm_timeout_seconds
    )
    app.state.password_reset_notifier = password_reset_notifier or _log_password_reset

    @app.exception_handler(Exception)
    def unhandled_exception(request: Request, exc: Exception) -> JSONResponse:
        # Details stay in the server log; callers get a generic message.
        logger.exception("Unhandled error path=%s method=%s", request.url.path, request.method)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(sessions.router)
    app.include_router(clinic.router)
    app.include_router(patients.router)
    app.include_router(invoices.router)
    app.include_router(documents.router)
    app.include_router(breadcrumbs.router)
    app.include_router(super_admin.router)

    return app


app = create_app()
