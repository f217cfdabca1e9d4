from __future__ import annotations

import asyncio
import logging
import sys
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger import jsonlogger
from sqlalchemy.exc import SQLAlchemyError

from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from .auth.service import LoginHandler
from .config import settings
from .database import Base, connect_with_retry, engine, ping
from .errors import register_exception_handlers
from .rate_limit import SlidingWindowLimiter, limiter
from .telemetry.login_audit import LoginAuditLog
from . import models  # noqa: F401 – registers ORM mappings with Base.metadata

log = logging.getLogger("shopadmin")

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

_logging_configured = False


def configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    global _logging_configured
    if _logging_configured:
        return
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    _logging_configured = True


def init_db() -> None:
    """Wait for the database, create tables and make sure an admin account exists."""
    connect_with_retry()
    Base.metadata.create_all(bind=engine)
    seed_admin()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app() -> FastAPI:
    """
    Build the API with its own login limiter and audit writer.

    Each call yields independent throttling state. The lifespan runs the
    limiter's sweeper and shuts the audit pool down on exit.
    """
    configure_logging()
    init_db()

    if settings.trust_proxy_headers and not settings.is_development:
        log.warning(
            "Login throttling trusts X-Forwarded-For; clients that bypass the "
            "proxy can spoof their address. Set SHOPADMIN_TRUST_PROXY_HEADERS=false "
            "if no trusted proxy fronts this service."
        )

    login_limiter = SlidingWindowLimiter(
        max_attempts=settings.login_max_attempts,
        window=timedelta(minutes=settings.login_window_minutes),
    )
    login_audit = LoginAuditLog(timeout_seconds=settings.audit_write_timeout_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(login_limiter.run_sweeper())
        log.info("Login limiter sweeper started (every %s)", login_limiter.window)
        try:
            yield
        finally:
            sweeper.cancel()
            with suppress(asyncio.CancelledError):
                await sweeper
            login_audit.close()

    app = FastAPI(
        title="Shop Admin API",
        version="1.0.0",
        description="Authentication and login-attempt auditing for the e-commerce admin panel.",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.login_limiter = login_limiter
    app.state.login_audit = login_audit
    app.state.login_handler = LoginHandler(login_limiter, login_audit)

    # slowapi, for declarative per-route limits
    app.state.limiter = limiter

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth_router)

    @app.get("/api/health", tags=["meta"])
    def health() -> JSONResponse:
        try:
            ping()
            database = {"status": "healthy", "message": "Database connection is active"}
        except SQLAlchemyError as exc:
            log.warning("Health check could not reach the database: %s", exc)
            database = {"status": "unhealthy", "message": "Database connection failed"}
        healthy = database["status"] == "healthy"
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "success": healthy,
                "message": "Server is running",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "environment": settings.environment,
                "database": database,
            },
        )

    return app


app = create_app()
